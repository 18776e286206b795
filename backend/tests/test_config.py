from config import Settings


def test_settings_read_env_file(tmp_path, monkeypatch):
    monkeypatch.delenv("TRANSCRIPTION_CONCURRENCY", raising=False)
    monkeypatch.delenv("TRANSCRIBER_BACKEND", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("TRANSCRIPTION_CONCURRENCY=2\nTRANSCRIBER_BACKEND=static\n", encoding="utf-8")

    loaded = Settings(_env_file=env_file)

    assert loaded.transcription_concurrency == 2
    assert loaded.transcriber_backend == "static"
    assert Settings.model_config["env_file"] == ".env"


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("TRANSCRIPTION_MAX_ATTEMPTS", "5")

    loaded = Settings(_env_file=None)

    assert loaded.transcription_max_attempts == 5
    assert loaded.transcription_backoff_ms == 2000
