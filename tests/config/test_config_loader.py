from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from lien_crawler.config import ConfigLocator, ConfigRepository, GlobalConfig, JurisdictionProfile
from lien_crawler.config.loader import slugify
from lien_crawler.errors import ProfileConfigurationError


def test_config_locator_uses_env_and_creates_directories(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LIEN_CRAWLER_HOME", str(tmp_path))
    locator = ConfigLocator()
    assert locator.project_root == tmp_path.resolve()
    assert locator.jurisdictions_dir == (tmp_path / "data" / "jurisdictions").resolve()
    for path in (locator.data_dir, locator.jurisdictions_dir, locator.logs_dir):
        assert path.exists()


def test_global_config_is_created_on_first_load(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load_global_config()
    assert config == GlobalConfig()
    assert temp_config_repository.locator.global_config_path().exists()
    assert temp_config_repository.database_path().name == "lien_crawler.db"


def test_global_config_roundtrip(tmp_path: Path) -> None:
    repo = ConfigRepository(ConfigLocator(project_root=tmp_path))
    config = GlobalConfig(user_agent_list=["agent-a"], over_threshold_amount="15000.50")
    repo.save_global_config(config)
    reloaded = ConfigRepository(ConfigLocator(project_root=tmp_path)).load_global_config()
    assert reloaded.user_agent_list == ["agent-a"]
    assert str(reloaded.over_threshold_amount) == "15000.50"


def test_profile_save_and_load(temp_config_repository: ConfigRepository, profile_factory) -> None:
    profile = profile_factory(id="harris-tx", name="Harris County")
    path = temp_config_repository.save_profile(profile)
    assert path.name == "harris-tx.yaml"
    loaded = temp_config_repository.load_profile("harris-tx")
    assert loaded == profile


def test_load_profile_missing_and_invalid(temp_config_repository: ConfigRepository) -> None:
    with pytest.raises(FileNotFoundError):
        temp_config_repository.load_profile("nowhere")
    broken = temp_config_repository.profile_path("broken")
    broken.write_text("id: broken\nname: Broken\n", encoding="utf-8")
    with pytest.raises(ProfileConfigurationError, match="broken.yaml"):
        temp_config_repository.load_profile("broken")


def test_load_profiles_separates_rejected_and_inactive(
    temp_config_repository: ConfigRepository, profile_factory, profile_payload
) -> None:
    temp_config_repository.save_profile(profile_factory(id="alpha"))
    temp_config_repository.save_profile(profile_factory(id="beta", active=False))
    duplicate = temp_config_repository.locator.jurisdictions_dir / "zz-duplicate.yaml"
    duplicate.write_text(yaml.safe_dump(profile_payload(id="alpha")), encoding="utf-8")
    invalid = temp_config_repository.locator.jurisdictions_dir / "invalid.yml"
    invalid.write_text(": not yaml: [", encoding="utf-8")

    profiles, errors = temp_config_repository.load_profiles()
    assert [p.id for p in profiles] == ["alpha", "beta"]
    assert sorted(error.path.name for error in errors) == ["invalid.yml", "zz-duplicate.yaml"]

    active, _ = temp_config_repository.load_profiles(active_only=True)
    assert [p.id for p in active] == ["alpha"]


def test_delete_profile(temp_config_repository: ConfigRepository, profile_factory) -> None:
    temp_config_repository.save_profile(profile_factory())
    assert temp_config_repository.delete_profile("test-county") is True
    assert temp_config_repository.delete_profile("test-county") is False


def test_bundled_template_is_a_valid_profile(temp_config_repository: ConfigRepository) -> None:
    payload = yaml.safe_load(temp_config_repository.template_path().read_text(encoding="utf-8"))
    profile = JurisdictionProfile.model_validate(payload)
    assert profile.id == "maricopa-az"
    assert profile.parsing.use_detail_page is True
    assert profile.selectors.next_page_button


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Maricopa County", "maricopa-county"),
        ("  St. Louis (City) ", "st-louis-city"),
        ("harris-tx", "harris-tx"),
    ],
)
def test_slugify(raw: str, expected: str) -> None:
    assert slugify(raw) == expected
