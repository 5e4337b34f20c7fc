import pytest

from booking_recon.config import DEFAULT_REBOOKING_WINDOW_DAYS, load_settings

KEYS = ['RECON_DB_URL', 'RECON_INPUT_FILE', 'RECON_OUTPUT_DIR', 'RECON_REBOOKING_WINDOW_DAYS', 'RECON_LOG_LEVEL']


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so monkeypatch restores whatever load_dotenv writes
    for key in KEYS:
        monkeypatch.setenv(key, '')
        monkeypatch.delenv(key)
    return monkeypatch


def test_values_from_env_file(clean_env, tmp_path):
    env_file = tmp_path / '.env'
    env_file.write_text(
        "RECON_DB_URL=sqlite:///ledger.db\n"
        "RECON_OUTPUT_DIR=out\n"
        "RECON_REBOOKING_WINDOW_DAYS=14\n"
        "RECON_LOG_LEVEL=debug\n"
    )

    settings = load_settings(str(env_file))

    assert settings.db_url == 'sqlite:///ledger.db'
    assert settings.output_dir == 'out'
    assert settings.rebooking_window_days == 14
    assert settings.log_level == 'DEBUG'
    assert settings.input_file == 'Sales Calculation 2025.txt'


def test_invalid_window_falls_back(clean_env, tmp_path):
    env_file = tmp_path / '.env'
    env_file.write_text("RECON_REBOOKING_WINDOW_DAYS=soon\n")

    assert load_settings(str(env_file)).rebooking_window_days == DEFAULT_REBOOKING_WINDOW_DAYS
