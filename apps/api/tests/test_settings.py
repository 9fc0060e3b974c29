from rewardledger_api.core.settings import Settings


def test_settings_parse_signer_allow_list() -> None:
    configured = Settings(claim_signer_allowed_addresses=" 0xAbc , ,0xdef ")

    assert configured.claim_signer_allowed_addresses == ["0xAbc", "0xdef"]


def test_settings_expose_recovery_throttle_and_no_unused_secret() -> None:
    configured = Settings()

    assert configured.reward_recovery_max_attempts == 5
    assert configured.reward_recovery_window_seconds == 3600
    assert "secret_key" not in Settings.model_fields
