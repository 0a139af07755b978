"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

UPLOAD_MODE_LINK = "link"
UPLOAD_MODE_DIRECT = "direct"


@dataclass(frozen=True)
class VaultConfig:
    """Process-wide vault configuration.

    Built once at startup and passed to each component factory. Required
    fields have no defaults and will cause a KeyError at startup if the
    corresponding environment variable is missing.
    """

    # Required — no defaults, fail at startup if missing
    api_endpoint: str
    client_id: str
    authority: str

    # Domain constants — defaults provided, overridable via env
    scopes: tuple[str, ...] = ()
    visibility: str = "protected"
    bin_segment: str = "bin"
    token_retries: int = 2
    token_backoff_seconds: float = 1.0
    archive_name: str = "download.zip"
    download_dir: str = "."
    upload_mode: str = UPLOAD_MODE_LINK
    storage_connection_string: str = ""
    storage_container: str = "vault"
    public_base_url: str = ""
    token_cache_path: str = ""


def load_config() -> VaultConfig:
    """Construct a VaultConfig from environment variables.

    Required environment variables:
        CV_API_ENDPOINT: Base URL of the control-plane REST API.
        CV_CLIENT_ID: Identity provider application (client) ID.
        CV_AUTHORITY: Identity provider authority URL.

    Optional environment variables (with defaults):
        CV_SCOPES: Space-separated scopes requested with the token.
        CV_VISIBILITY: Leading storage key segment (default: protected).
        CV_BIN_SEGMENT: Key segment marking soft-deleted items (default: bin).
        CV_TOKEN_RETRIES: Token wait retries before AuthNotReady (default: 2).
        CV_TOKEN_BACKOFF_SECONDS: Sleep between token attempts (default: 1.0).
        CV_ARCHIVE_NAME: File name of batch download archives (default: download.zip).
        CV_DOWNLOAD_DIR: Directory downloads are saved into (default: .).
        CV_UPLOAD_MODE: "link" for broker-issued upload links, "direct" for
            direct blob writes (default: link).
        CV_STORAGE_CONNECTION_STRING: Blob storage connection string, direct mode only.
        CV_STORAGE_CONTAINER: Blob container, direct mode only (default: vault).
        CV_PUBLIC_BASE_URL: When set, downloads read from this public bucket URL
            instead of asking the control plane for a link.
        CV_TOKEN_CACHE_PATH: Serialized MSAL token cache written at sign-in.

    Returns:
        Configured VaultConfig instance.

    Raises:
        ValueError: If CV_UPLOAD_MODE is not a known mode, or direct mode is
            selected without a storage connection string.
    """
    upload_mode = os.environ.get("CV_UPLOAD_MODE", UPLOAD_MODE_LINK)
    if upload_mode not in (UPLOAD_MODE_LINK, UPLOAD_MODE_DIRECT):
        raise ValueError(f"Unknown CV_UPLOAD_MODE: {upload_mode}")
    connection_string = os.environ.get("CV_STORAGE_CONNECTION_STRING", "")
    if upload_mode == UPLOAD_MODE_DIRECT and not connection_string:
        raise ValueError("CV_STORAGE_CONNECTION_STRING is required when CV_UPLOAD_MODE=direct")

    return VaultConfig(
        api_endpoint=os.environ["CV_API_ENDPOINT"].rstrip("/"),
        client_id=os.environ["CV_CLIENT_ID"],
        authority=os.environ["CV_AUTHORITY"],
        scopes=tuple(os.environ.get("CV_SCOPES", "").split()),
        visibility=os.environ.get("CV_VISIBILITY", "protected"),
        bin_segment=os.environ.get("CV_BIN_SEGMENT", "bin"),
        token_retries=int(os.environ.get("CV_TOKEN_RETRIES", "2")),
        token_backoff_seconds=float(os.environ.get("CV_TOKEN_BACKOFF_SECONDS", "1.0")),
        archive_name=os.environ.get("CV_ARCHIVE_NAME", "download.zip"),
        download_dir=os.environ.get("CV_DOWNLOAD_DIR", "."),
        upload_mode=upload_mode,
        storage_connection_string=connection_string,
        storage_container=os.environ.get("CV_STORAGE_CONTAINER", "vault"),
        public_base_url=os.environ.get("CV_PUBLIC_BASE_URL", "").rstrip("/"),
        token_cache_path=os.environ.get("CV_TOKEN_CACHE_PATH", ""),
    )
