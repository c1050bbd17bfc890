"""
Password hashing utilities using bcrypt.
"""

import bcrypt

# Cost factor for bcrypt hashing; digests embed it so verification needs no config
BCRYPT_ROUNDS = 8


class PasswordHasher:
    """Password hashing service."""

    @staticmethod
    def _truncate_password(password: str) -> bytes:
        """
        Truncate password to 72 bytes (bcrypt limit) and encode.

        bcrypt only uses the first 72 bytes of a password.
        """
        return password.encode('utf-8')[:72]

    @staticmethod
    def hash(password: str) -> str:
        """
        Hash a password using bcrypt.

        Args:
            password: Plain text password

        Returns:
            Self-describing digest (``$2b$08$<salt><hash>``)
        """
        pwd_bytes = PasswordHasher._truncate_password(password)
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        hashed = bcrypt.hashpw(pwd_bytes, salt)
        return hashed.decode('utf-8')

    @staticmethod
    def verify(plain_password: str, hashed_password: str) -> bool:
        """
        Verify a password against its hash.

        Malformed or empty digests fail closed instead of raising.

        Args:
            plain_password: Plain text password to verify
            hashed_password: Stored hashed password

        Returns:
            True if password matches, False otherwise
        """
        if not hashed_password:
            return False
        try:
            pwd_bytes = PasswordHasher._truncate_password(plain_password)
            hash_bytes = hashed_password.encode('utf-8')
            return bcrypt.checkpw(pwd_bytes, hash_bytes)
        except (ValueError, TypeError, AttributeError):
            return False

    @staticmethod
    def needs_rehash(hashed_password: str) -> bool:
        """
        Check if a password hash was produced with a different cost factor.

        Args:
            hashed_password: Existing password hash

        Returns:
            True if hash should be regenerated
        """
        # Format: $2b$XX$... where XX is the rounds
        parts = (hashed_password or "").split('$')
        if len(parts) < 4:
            return True
        try:
            return int(parts[2]) != BCRYPT_ROUNDS
        except ValueError:
            return True


# Convenience functions
def hash_password(password: str) -> str:
    """Hash a password."""
    return PasswordHasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password."""
    return PasswordHasher.verify(plain_password, hashed_password)
