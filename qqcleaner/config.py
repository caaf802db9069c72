"""
Configuration constants for the QQ media cleaner.
"""

# --- Source Database Layout ---
# The NT client stores its tables with numeric column names.
FILES_DB_NAME = "files_in_chat.db"
GROUP_DB_NAME = "group_info.db"
CLEAN_DB_SUFFIX = ".clean.db"

FILES_TABLE = "files_in_chat_table"
GROUP_TABLE = "group_detail_info_ver1"

# files_in_chat_table
COL_ELEMENT_ID = "45001"      # reference id
COL_MSG_ID = "40001"
COL_PEER_UID = "40021"        # group number for group chats
COL_CHAT_TYPE = "40010"
COL_MSG_TIME = "40050"        # unix seconds
COL_FILE_NAME = "45402"
COL_FILE_PATH = "45403"
COL_FILE_SIZE = "45405"

# group_detail_info_ver1
COL_GROUP_ID = "60001"
COL_GROUP_NAME = "60007"
COL_GROUP_REMARK = "60026"
COL_OWNER_UID = "60002"
COL_MEMBER_COUNT = "60006"
COL_QUIT_FLAG = "60340"       # 1 = no longer a member

GROUP_CHAT_TYPE = 2

# --- Decryption ---
# Encrypted NT databases carry a fixed-size client header before the SQLCipher pages.
NT_DB_HEADER_SIZE = 1024
CIPHER_PAGE_SIZE = 4096
CIPHER_KDF_ITER = 4000
CIPHER_KDF_ALGORITHM = "PBKDF2_HMAC_SHA512"
# Tried in order until one opens the database.
CIPHER_HMAC_ALGORITHMS = ("HMAC_SHA1", "HMAC_SHA256", "HMAC_SHA512")
DEFAULT_KEY_FILE = "sqlcipher.key"

# --- Media Layout ---
# <data_dir>/<YYYY-MM>/Ori/<name> with thumbnails in <data_dir>/<YYYY-MM>/Thumb/
ORIGINAL_DIR = "Ori"
THUMB_DIR = "Thumb"
THUMB_SUFFIXES = ("_0", "_720")
MONTH_DIR_PATTERN = "{year}-{month:02d}"

# --- Selection ---
TIME_RANGE_PRESETS = (3, 7, 14, 30, 90, 180)  # days

# --- Actions ---
PARTIAL_SUFFIX = ".part"
DEFAULT_MAX_WORKERS = 4
DEFAULT_MIGRATE_DIR = "QQCleaner"
