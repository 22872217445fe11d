import pytest

from termquery.shared.config import (
    BackendConfig,
    Config,
    Settings,
    get_config,
    reload_config,
    validate_config_at_startup,
)


def test_development_config_loads_defaults(monkeypatch):
    monkeypatch.setenv("ENV", "development")
    config, settings = reload_config()

    assert settings.env == "development"
    assert config.backend.kind == "memory"
    assert config.branching.root_path == "MAIN"
    assert config.search.min_term_length == 3
    assert config.search.default_language_codes == ["en"]
    assert get_config() is config


def test_config_path_override(monkeypatch, tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("search:\n  min_term_length: 4\n  default_language_codes: [en, fr]\n")
    monkeypatch.setenv("CONFIG_PATH", str(path))

    config, _ = reload_config()

    assert config.search.min_term_length == 4
    assert config.search.default_language_codes == ["en", "fr"]

    monkeypatch.delenv("CONFIG_PATH")
    reload_config()


def test_missing_config_file_raises(monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "absent.yaml"))
    with pytest.raises(FileNotFoundError):
        reload_config()
    monkeypatch.delenv("CONFIG_PATH")
    reload_config()


def test_unknown_backend_kind_rejected():
    with pytest.raises(ValueError):
        BackendConfig(kind="elasticsearch")


def test_neo4j_backend_requires_password():
    config = Config(backend=BackendConfig(kind="neo4j"))
    settings = Settings(NEO4J_PASSWORD="")
    with pytest.raises(ValueError, match="NEO4J_PASSWORD"):
        validate_config_at_startup(config, settings)


def test_page_size_bounds_validated():
    config = Config.model_validate(
        {"search": {"default_page_size": 500, "max_page_size": 100}}
    )
    with pytest.raises(ValueError, match="max_page_size"):
        validate_config_at_startup(config, Settings())
