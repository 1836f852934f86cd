"""Injection-safe remote command construction.

The SSH transport joins an argument vector with spaces before the remote
shell sees it, so a compound script split across elements would run only
its first word. Every builder here returns exactly one element holding
the whole script, with untrusted content validated and single-quoted.
"""

from __future__ import annotations

import re

from mint.exceptions import ConfigurationError, EmptyInputError, InvalidCharactersError

type Command = tuple[str]

_FORBIDDEN = frozenset(";|&$`\n\r'\"\\<>(){}*?!#~")

PUBLIC_KEY_TYPES = ("ssh-rsa", "ssh-ed25519", "ecdsa-sha2-", "ssh-dss", "sk-ssh-")
_PUBLIC_KEY_CHARS = re.compile(r"^[A-Za-z0-9+/=@. _:,-]+$")
_USER_RE = re.compile(r"^[a-z_][a-z0-9_-]*$")


def validate_content(content: str) -> str:
    """Reject untrusted content before it is embedded in a shell script.

    Raises:
        EmptyInputError: If content is empty or only whitespace.
        InvalidCharactersError: If content carries shell metacharacters.
    """
    if not content or not content.strip():
        raise EmptyInputError("content is empty")
    content = content.strip()
    bad = sorted({c for c in content if c in _FORBIDDEN})
    if bad:
        raise InvalidCharactersError(f"content contains invalid characters: {bad!r}")
    return content


def validate_public_key(key: str) -> str:
    """Validate one OpenSSH public key line and return it stripped."""
    key = validate_content(key)
    if not _PUBLIC_KEY_CHARS.match(key):
        raise InvalidCharactersError("public key contains invalid characters")
    if not key.startswith(PUBLIC_KEY_TYPES):
        raise ConfigurationError(
            f"unrecognized public key type; expected one of: {', '.join(PUBLIC_KEY_TYPES)}"
        )
    if len(key.split()) < 2:
        raise ConfigurationError("public key is missing its base64 body")
    return key


def _validate_user(user: str) -> str:
    if not _USER_RE.match(user):
        raise InvalidCharactersError(f"invalid characters in user name {user!r}")
    return user


def _authorized_keys(user: str) -> str:
    return f"/home/{_validate_user(user)}/.ssh/authorized_keys"


def check_authorized_key(user: str, key: str) -> Command:
    """Script printing the matching line, tolerating a missing key file."""
    key = validate_public_key(key)
    return (f"grep -F '{key}' {_authorized_keys(user)} 2>/dev/null || true",)


def append_authorized_key(user: str, key: str) -> Command:
    """Script appending key, creating ~/.ssh first when needed."""
    key = validate_public_key(key)
    return (
        f"mkdir -p /home/{_validate_user(user)}/.ssh && "
        f"printf '%s\\n' '{key}' >> {_authorized_keys(user)}",
    )


def read_file_tolerant(path: str) -> Command:
    """Script printing path, or nothing when it does not exist."""
    path = validate_content(path)
    return (f"cat '{path}' 2>/dev/null || true",)
