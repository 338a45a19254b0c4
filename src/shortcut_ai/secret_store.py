from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEFAULT_KEYCHAIN_SERVICE = "com.shortcutai.desktop"
LOGIN_KEYCHAIN_PATH = Path.home() / "Library" / "Keychains" / "login.keychain-db"
SECURITY_TIMEOUT_SECONDS = 30.0


def account_for(provider: str) -> str:
    return f"{provider}_api_key"


def env_var_for(provider: str) -> str:
    return f"{provider.upper()}_API_KEY"


class SecretStore:
    """Keychain wrapper holding one API key per provider, independent of the action catalog."""

    def __init__(self, service_name: str = DEFAULT_KEYCHAIN_SERVICE) -> None:
        self.service_name = service_name
        self.keychain_path = str(LOGIN_KEYCHAIN_PATH)

    def get_api_key(self, provider: str) -> str | None:
        env_key = os.getenv(env_var_for(provider))
        if env_key and env_key.strip():
            return env_key.strip()

        result = self._run_security(
            [
                "find-generic-password",
                "-a",
                account_for(provider),
                "-s",
                self.service_name,
                "-w",
                self.keychain_path,
            ]
        )
        if result is None:
            return None
        value = result.strip()
        return value or None

    def has_api_key(self, provider: str) -> bool:
        return bool(self.get_api_key(provider))

    def set_api_key(self, provider: str, api_key: str) -> None:
        value = api_key.strip()
        if not value:
            raise ValueError("API key cannot be empty")

        self._run_security(
            [
                "add-generic-password",
                "-a",
                account_for(provider),
                "-s",
                self.service_name,
                "-U",
                "-w",
                value,
                self.keychain_path,
            ],
            required=True,
        )
        LOGGER.info("Stored API key for %s", provider)

    def delete_api_key(self, provider: str) -> None:
        self._run_security(
            [
                "delete-generic-password",
                "-a",
                account_for(provider),
                "-s",
                self.service_name,
                self.keychain_path,
            ],
            required=False,
        )

    def _run_security(self, args: list[str], required: bool = False) -> str | None:
        try:
            result = subprocess.run(
                ["security", *args],
                check=False,
                capture_output=True,
                text=True,
                timeout=SECURITY_TIMEOUT_SECONDS,
            )
        except FileNotFoundError:
            if required:
                raise RuntimeError("macOS security command not found") from None
            LOGGER.warning("macOS security command not found")
            return None
        except subprocess.TimeoutExpired:
            message = (
                "Timed out waiting for Keychain authorization. "
                "Please unlock the login keychain in Keychain Access and retry."
            )
            if required:
                raise RuntimeError(message) from None
            LOGGER.warning(message)
            return None
        except subprocess.SubprocessError:
            if required:
                raise RuntimeError("Keychain command failed unexpectedly") from None
            LOGGER.warning("Keychain command failed unexpectedly", exc_info=True)
            return None

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if required:
                message = (
                    "Unable to store the API key in Keychain. "
                    "Open Keychain Access, unlock the 'login' keychain, and retry."
                )
                if stderr:
                    message = f"{message} Details: {stderr}"
                if "Unable to obtain authorization for this operation" in stderr:
                    message = (
                        "Keychain authorization denied. "
                        "Open Keychain Access, unlock the 'login' keychain, "
                        "then retry saving the key."
                    )
                LOGGER.warning("Keychain command failed: %s", stderr)
                raise RuntimeError(message) from None
            LOGGER.debug("Keychain command failed: %s", stderr)
            return None
        return result.stdout
