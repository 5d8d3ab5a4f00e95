"""Unit tests for core/env.py -- prefix-fallback lookup and .env discovery.

Covers:
- resolve() precedence: prefixed key, then bare key, then default, then None
- require_resolve() raises MissingConfiguration naming both forms
- validate_required() reports exactly the absent keys, in order; an empty
  prefixed value does not hide the bare key
- load_sources(): first found wins, ambient environment wins, unreadable
  files are skipped
- default_candidate_paths() / service_prefix() service mapping
"""

import os
from pathlib import Path

import pytest

from core import env as env_module
from core.env import (
    DEFAULT_PREFIX,
    FileDiscoveryFailure,
    MissingConfiguration,
    default_candidate_paths,
    load_sources,
    prefixed_keys,
    require_resolve,
    resolve,
    resolve_non_empty,
    service_prefix,
    validate_required,
)

# ---------------------------------------------------------------------------
# resolve()
# ---------------------------------------------------------------------------


class TestResolve:
    def test_prefixed_key_wins_over_bare_key(self):
        environ = {"EVALUATION_PORT": "4000", "PORT": "3000"}
        assert resolve("PORT", "EVALUATION_", environ=environ) == "4000"

    def test_prefixed_key_wins_even_with_default(self):
        environ = {"GRADING_JWT_SECRET": "scoped", "JWT_SECRET": "shared"}
        assert resolve("JWT_SECRET", "GRADING_", "fallback", environ=environ) == "scoped"

    def test_bare_key_used_when_prefixed_absent(self):
        assert resolve("PORT", "EVALUATION_", "8080", environ={"PORT": "3000"}) == "3000"

    def test_default_used_when_both_absent(self):
        assert resolve("PORT", "EVALUATION_", "8080", environ={}) == "8080"

    def test_none_signals_absence_without_default(self):
        assert resolve("PORT", "EVALUATION_", environ={}) is None

    def test_other_service_prefix_is_ignored(self):
        environ = {"TOKEN_PORT": "3001", "PORT": "3000"}
        assert resolve("PORT", "EVALUATION_", environ=environ) == "3000"

    def test_empty_string_counts_as_present(self):
        environ = {"EVALUATION_FRONTEND_URL": "", "FRONTEND_URL": "https://app.example.com"}
        assert resolve("FRONTEND_URL", environ=environ) == ""

    def test_default_prefix_is_evaluation(self):
        assert DEFAULT_PREFIX == "EVALUATION_"
        assert resolve("PORT", environ={"EVALUATION_PORT": "4000"}) == "4000"

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            resolve("", environ={})

    def test_reads_process_environment_live(self, monkeypatch):
        monkeypatch.delenv("EVALUATION_CAMPUS_TEST_KEY", raising=False)
        monkeypatch.setenv("CAMPUS_TEST_KEY", "first")
        assert resolve("CAMPUS_TEST_KEY") == "first"
        monkeypatch.setenv("EVALUATION_CAMPUS_TEST_KEY", "second")
        assert resolve("CAMPUS_TEST_KEY") == "second"


class TestRequireResolve:
    def test_returns_value_when_present(self):
        assert require_resolve("JWT_SECRET", environ={"JWT_SECRET": "s3cret"}) == "s3cret"

    def test_missing_raises_with_both_names(self):
        with pytest.raises(MissingConfiguration) as excinfo:
            require_resolve("JWT_SECRET", "TOKEN_", environ={"JWT": "x"})
        message = str(excinfo.value)
        assert "JWT_SECRET" in message
        assert "TOKEN_JWT_SECRET" in message
        assert excinfo.value.name == "JWT_SECRET"
        assert excinfo.value.prefix == "TOKEN_"

    def test_missing_is_also_a_key_error(self):
        with pytest.raises(KeyError):
            require_resolve("PORT", environ={})


# ---------------------------------------------------------------------------
# validate_required()
# ---------------------------------------------------------------------------


class TestValidateRequired:
    def test_lists_exactly_the_absent_keys(self):
        result = validate_required(["JWT_SECRET", "PORT"], environ={"PORT": "3000"})
        assert result.ok is False
        assert not result
        assert result.missing == ["JWT_SECRET"]

    def test_both_absent(self):
        result = validate_required(["JWT_SECRET", "PORT"], environ={})
        assert not result
        assert result.missing == ["JWT_SECRET", "PORT"]

    def test_prefixed_form_satisfies_requirement(self):
        environ = {"EVALUATION_JWT_SECRET": "x" * 32, "PORT": "3000"}
        result = validate_required(["JWT_SECRET", "PORT"], environ=environ)
        assert result
        assert result.missing == []

    def test_empty_value_counts_as_missing(self):
        result = validate_required(["PGHOST"], environ={"PGHOST": ""})
        assert result.missing == ["PGHOST"]

    def test_empty_prefixed_value_falls_through_to_bare_key(self):
        environ = {"EVALUATION_JWT_SECRET": "", "JWT_SECRET": "shared-secret", "PORT": "3000"}
        result = validate_required(["JWT_SECRET", "PORT"], environ=environ)
        assert result
        assert result.missing == []


class TestResolveNonEmpty:
    def test_empty_prefixed_value_skipped(self):
        environ = {"EVALUATION_PGHOST": "", "PGHOST": "db.internal"}
        assert resolve_non_empty("PGHOST", environ=environ) == "db.internal"

    def test_both_empty_is_none(self):
        assert resolve_non_empty("PGHOST", environ={"EVALUATION_PGHOST": "", "PGHOST": ""}) is None

    def test_prefixed_value_still_wins(self):
        environ = {"EVALUATION_PGHOST": "scoped", "PGHOST": "shared"}
        assert resolve_non_empty("PGHOST", environ=environ) == "scoped"


# ---------------------------------------------------------------------------
# load_sources()
# ---------------------------------------------------------------------------


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadSources:
    def test_first_found_wins(self, tmp_path):
        a = _write(tmp_path / "a" / ".env", "X=from-a\nONLY_A=1\n")
        b = tmp_path / "b" / ".env"  # never created
        c = _write(tmp_path / "c" / ".env", "X=from-c\nONLY_C=3\n")
        environ: dict[str, str] = {}

        loaded = load_sources([a, b, c], environ=environ)

        assert loaded == [a, c]
        assert environ["X"] == "from-a"
        assert environ["ONLY_A"] == "1"
        assert environ["ONLY_C"] == "3"

    def test_existing_keys_are_not_overridden(self, tmp_path):
        path = _write(tmp_path / ".env", "PORT=9999\nFRONTEND_URL=https://app.example.com\n")
        environ = {"PORT": "3000"}
        load_sources([path], environ=environ)
        assert environ["PORT"] == "3000"
        assert environ["FRONTEND_URL"] == "https://app.example.com"

    def test_blank_lines_comments_and_quotes(self, tmp_path):
        path = _write(
            tmp_path / ".env",
            '# database\n\nPGHOST=db.internal\n\nJWT_SECRET="quoted value"\nexport NODE_ENV=production\nBARE\n',
        )
        environ: dict[str, str] = {}
        load_sources([path], environ=environ)
        assert environ == {"PGHOST": "db.internal", "JWT_SECRET": "quoted value", "NODE_ENV": "production"}

    def test_no_files_found_is_not_an_error(self, tmp_path):
        environ = {"PORT": "3000"}
        assert load_sources([tmp_path / "missing.env"], environ=environ) == []
        assert environ == {"PORT": "3000"}

    def test_directory_candidate_is_skipped(self, tmp_path):
        environ: dict[str, str] = {}
        assert load_sources([tmp_path], environ=environ) == []

    def test_unreadable_file_is_skipped_and_logged(self, tmp_path, monkeypatch, caplog):
        bad = _write(tmp_path / "bad.env", "X=bad\n")
        good = _write(tmp_path / "good.env", "X=good\n")
        real_dotenv_values = env_module.dotenv_values

        def fake_dotenv_values(path, **kwargs):
            if Path(path) == bad:
                raise PermissionError(13, "Permission denied")
            return real_dotenv_values(path, **kwargs)

        monkeypatch.setattr(env_module, "dotenv_values", fake_dotenv_values)
        environ: dict[str, str] = {}

        loaded = load_sources([bad, good], environ=environ)

        assert loaded == [good]
        assert environ["X"] == "good"
        assert "bad.env" in caplog.text

    def test_read_failure_raises_file_discovery_failure(self, tmp_path, monkeypatch):
        path = _write(tmp_path / ".env", "X=1\n")

        def boom(path, **kwargs):
            raise OSError("disk gone")

        monkeypatch.setattr(env_module, "dotenv_values", boom)
        with pytest.raises(FileDiscoveryFailure) as excinfo:
            env_module._read_source(path)
        assert excinfo.value.path == path

    def test_defaults_to_process_environment(self, tmp_path, clean_env):
        path = _write(tmp_path / ".env", "JWT_SECRET=from-file\n")
        load_sources([path])
        assert os.environ["JWT_SECRET"] == "from-file"
        assert resolve("JWT_SECRET") == "from-file"


# ---------------------------------------------------------------------------
# Services and candidate paths
# ---------------------------------------------------------------------------


class TestServices:
    def test_service_prefixes(self):
        assert service_prefix("token") == "TOKEN_"
        assert service_prefix("Evaluation") == "EVALUATION_"
        assert service_prefix("grading") == "GRADING_"

    def test_unknown_service_rejected(self):
        with pytest.raises(ValueError):
            service_prefix("billing")

    def test_default_candidate_paths_order(self, tmp_path):
        paths = default_candidate_paths("grading", tmp_path)
        assert paths == [
            tmp_path / ".env",
            tmp_path / "backend" / ".env",
            tmp_path / "backend" / "Grading-System" / ".env",
        ]

    def test_root_env_wins_over_service_env(self, tmp_path):
        _write(tmp_path / ".env", "PORT=5000\n")
        _write(tmp_path / "backend" / "Evaluation-System" / ".env", "PORT=3002\nPGHOST=local\n")
        environ: dict[str, str] = {}
        load_sources(default_candidate_paths("evaluation", tmp_path), environ=environ)
        assert environ == {"PORT": "5000", "PGHOST": "local"}

    def test_prefixed_keys_lists_names_only(self):
        environ = {"EVALUATION_PGUSER": "u", "EVALUATION_JWT_SECRET": "s", "PGUSER": "x", "TOKEN_PORT": "1"}
        assert prefixed_keys("EVALUATION_", environ=environ) == ["EVALUATION_JWT_SECRET", "EVALUATION_PGUSER"]
