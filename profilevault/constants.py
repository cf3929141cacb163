# Container magic and versions
MAGIC = b"GPBK"
VERSION_LEGACY = 0x01  # nothing bound as associated data
VERSION_CURRENT = 0x02  # header prefix bound as associated data
SUPPORTED_VERSIONS = (VERSION_LEGACY, VERSION_CURRENT)

# Field sizes (bytes)
SALT_SIZE = 16
NONCE_SIZE = 24
TAG_SIZE = 16
KEY_SIZE = 32
TIMESTAMP_SIZE = 8
LENGTH_SIZE = 8

# magic[4], version u8, salt[16], nonce[24], timestamp u64, ciphertext_len u64
HEADER_SIZE = len(MAGIC) + 1 + SALT_SIZE + NONCE_SIZE + TIMESTAMP_SIZE + LENGTH_SIZE

# scrypt defaults (N, r, p)
DEFAULT_SCRYPT_N = 1 << 15
DEFAULT_SCRYPT_R = 8
DEFAULT_SCRYPT_P = 1

# Backup files are private to the owner
CONTAINER_FILE_MODE = 0o600

# Modes applied while extracting, before recorded modes are restored
STAGING_DIR_MODE = 0o700

# Archive entry kinds
ENTRY_FILE = 0
ENTRY_DIR = 1
