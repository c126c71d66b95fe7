"""
Unit tests for generator settings.
"""

from dbgen.modelgen.config import GeneratorSettings


class TestGeneratorSettings:
    """Tests for GeneratorSettings."""

    def test_defaults(self, monkeypatch):
        """Defaults apply without environment."""
        for name in ["MODELGEN_MODEL_FILE_NAME", "MODELGEN_UID_SEED", "MODELGEN_LOG_LEVEL"]:
            monkeypatch.delenv(name, raising=False)

        settings = GeneratorSettings()

        assert settings.model_file_name == "entity-model.json"
        assert settings.uid_seed is None
        assert settings.log_format == "text"

    def test_env_prefix(self, monkeypatch):
        """MODELGEN_ variables override defaults."""
        monkeypatch.setenv("MODELGEN_UID_SEED", "42")
        monkeypatch.setenv("MODELGEN_MODEL_FILE_NAME", "model.json")

        settings = GeneratorSettings()

        assert settings.uid_seed == 42
        assert settings.model_file_name == "model.json"

    def test_seeded_rng_is_reproducible(self):
        """The same seed yields the same uids."""
        settings = GeneratorSettings(uid_seed=7)

        assert settings.make_rng().getrandbits(64) == settings.make_rng().getrandbits(64)
