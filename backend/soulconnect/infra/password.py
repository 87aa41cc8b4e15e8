"""Centralized password hashing configuration.

All modules requiring password hashing import from here so that every hash
shares the same Argon2id parameters.
"""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

PASSWORD_HASHER = PasswordHasher(
	time_cost=3,
	memory_cost=65536,  # 64 MB in KB
	parallelism=4,
	hash_len=32,
	salt_len=16,
)


def hash_password(password: str) -> str:
	"""Hash a password using Argon2id."""
	return PASSWORD_HASHER.hash(password)


def verify_password(hash: str, password: str) -> bool:
	"""Verify a password against its hash; returns False on any mismatch."""
	try:
		PASSWORD_HASHER.verify(hash, password)
	except (VerificationError, InvalidHashError):
		return False
	return True


def check_needs_rehash(hash: str) -> bool:
	return PASSWORD_HASHER.check_needs_rehash(hash)
