"""auth/ -- Registration, login and JWT issuance for the campus services.

Layer rule: auth/ may import from core/ (settings) but never from api/.
api/ imports from auth/, not the other way around.
"""
