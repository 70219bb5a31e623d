"""Tests for uploader options and application settings."""

import pytest

from uploader.config import (
    BASE_DIR,
    DEFAULT_MESSAGES,
    Settings,
    UploaderOptions,
    get_package_version,
    get_uploader_options,
)
from uploader.exceptions import ConfigurationError


class TestUploaderOptions:
    """Tests for UploaderOptions defaults and validation."""

    def test_defaults(self) -> None:
        options = UploaderOptions()

        assert options.method == "POST"
        assert options.field_name == "file"
        assert options.concurrency_limit == 3
        assert options.max_files is None
        assert options.auto_start is True
        assert options.remove_on_fail is True
        assert options.id_prefix == "upload_"
        assert options.transport == "streaming"
        assert options.messages == DEFAULT_MESSAGES

    def test_method_is_uppercased(self) -> None:
        assert UploaderOptions(method="put").method == "PUT"

    def test_size_range_in_bytes(self) -> None:
        options = UploaderOptions(accepted_size_range_kib=(1, 2048))
        assert options.min_size_bytes == 1024
        assert options.max_size_bytes == 2048 * 1024

    def test_open_size_range(self) -> None:
        options = UploaderOptions()
        assert options.min_size_bytes is None
        assert options.max_size_bytes is None

    def test_custom_message_overrides_one_key(self) -> None:
        options = UploaderOptions(messages={"network_error": "Try again: {{fileName}}"})

        assert options.messages["network_error"] == "Try again: {{fileName}}"
        assert options.messages["invalid_type"] == DEFAULT_MESSAGES["invalid_type"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"concurrency_limit": 0},
            {"max_files": -1},
            {"transport": "ftp"},
            {"transport": "s3"},
        ],
    )
    def test_invalid(self, kwargs: dict[str, object]) -> None:
        with pytest.raises(ConfigurationError):
            UploaderOptions(**kwargs)  # type: ignore[arg-type]

    def test_zero_max_files_allowed(self) -> None:
        assert UploaderOptions(max_files=0).max_files == 0


class TestFromMapping:
    """Tests for building options from a settings dictionary."""

    def test_converts_values(self) -> None:
        options = UploaderOptions.from_mapping(
            {
                "url": "http://uploads.test/upload",
                "concurrency_limit": "4",
                "max_files": "10",
                "accepted_size_range_kib": [None, "512"],
                "accepted_extensions": ["jpg", "png"],
                "extra_headers": {"Authorization": "Bearer t"},
                "request_timeout": "12.5",
            }
        )

        assert options.concurrency_limit == 4
        assert options.max_files == 10
        assert options.accepted_size_range_kib == (None, 512)
        assert options.accepted_extensions == ["jpg", "png"]
        assert options.extra_headers == {"Authorization": "Bearer t"}
        assert options.request_timeout == 12.5

    def test_empty_max_files_is_unlimited(self) -> None:
        assert UploaderOptions.from_mapping({"max_files": ""}).max_files is None

    def test_missing_keys_use_defaults(self) -> None:
        assert UploaderOptions.from_mapping({}) == UploaderOptions()

    @pytest.mark.parametrize(
        "values",
        [
            {"concurrency_limit": "lots"},
            {"max_files": "ten"},
            {"accepted_size_range_kib": [1]},
            {"extra_headers": "Authorization"},
            {"concurrency_limit": -3},
        ],
    )
    def test_invalid_values(self, values: dict[str, object]) -> None:
        with pytest.raises(ConfigurationError):
            UploaderOptions.from_mapping(values)


class TestSettings:
    """Tests for the Settings singleton."""

    def test_singleton(self) -> None:
        assert Settings() is Settings()

    def test_update_and_get(self, isolated_settings: Settings) -> None:
        isolated_settings.update({"url": "http://uploads.test/x", "max_files": 2})

        assert isolated_settings.get("url") == "http://uploads.test/x"
        assert get_uploader_options().max_files == 2

    def test_all_returns_copy(self, isolated_settings: Settings) -> None:
        values = isolated_settings.all()
        values["url"] = "changed"
        assert isolated_settings.get("url") != "changed"

    def test_relative_log_directory(self, isolated_settings: Settings) -> None:
        isolated_settings.set("log_directory", "var/logs")
        assert isolated_settings.log_directory == BASE_DIR / "var" / "logs"

    def test_environment_overrides(
        self, isolated_settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("UPLOADER_URL", "http://env.test/upload")
        monkeypatch.setenv("UPLOADER_CONCURRENCY_LIMIT", "7")

        isolated_settings.reload()

        assert isolated_settings.get("url") == "http://env.test/upload"
        assert get_uploader_options().concurrency_limit == 7


class TestPackageVersion:
    def test_reads_pyproject(self) -> None:
        assert get_package_version() == "0.9.0"
