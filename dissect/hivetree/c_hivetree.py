from __future__ import annotations

from dissect.cstruct import cstruct

hivetree_def = """
typedef ULONG       HCELL_INDEX;
typedef ULONGLONG   LARGE_INTEGER;

#define HTYPE_COUNT 2

typedef struct _HIVE_HEADER {
    CHAR            Signature[4];
    ULONG           Sequence1;
    ULONG           Sequence2;
    LARGE_INTEGER   TimeStamp;
    ULONG           Major;
    ULONG           Minor;
    ULONG           Release;
    ULONG           Build;
    HCELL_INDEX     DataOffset;
    ULONG           LastBlock;
    ULONG           Unknown;
    CHAR            Padding[0x1cc];
    ULONG           CheckSum;
} HIVE_HEADER;

typedef struct _HBIN {
    CHAR            Signature[4];
    HCELL_INDEX     FileOffset;
    ULONG           NextOffset;
    ULONG           Reserved[2];
    LARGE_INTEGER   TimeStamp;
    ULONG           Size;
} HBIN;

typedef struct _CHILD_LIST {
    LONG            Count;
    HCELL_INDEX     List;
} CHILD_LIST;

typedef struct _CM_KEY_NODE {
    CHAR            Signature[2];
    USHORT          Type;
    LARGE_INTEGER   LastWriteTime;
    ULONG           Spare;
    HCELL_INDEX     Parent;
    LONG            SubKeyCounts[HTYPE_COUNT];
    HCELL_INDEX     SubKeyLists[HTYPE_COUNT];
    CHILD_LIST      ValueList;
    HCELL_INDEX     Security;
    HCELL_INDEX     Class;
    ULONG           MaxNameLen;
    ULONG           MaxClassLen;
    ULONG           MaxValueNameLen;
    ULONG           MaxValueDataLen;
    ULONG           WorkVar;
    USHORT          NameLength;
    USHORT          ClassLength;
    // CHAR            Name[NameLength];
} CM_KEY_NODE;

typedef struct _CM_INDEX {
    HCELL_INDEX     Cell;
    CHAR            NameHint[4];
} CM_INDEX;

typedef struct _CM_HASH_INDEX {
    HCELL_INDEX     Cell;
    ULONG           HashKey;
} CM_HASH_INDEX;

typedef struct _CM_KEY_INDEX_HEADER {
    CHAR            Signature[2];
    SHORT           Count;
} CM_KEY_INDEX_HEADER;

typedef struct _CM_KEY_INDEX {
    CHAR            Signature[2];
    SHORT           Count;
    HCELL_INDEX     List[Count];
} CM_KEY_INDEX;

typedef struct _CM_KEY_FAST_INDEX {
    CHAR            Signature[2];
    SHORT           Count;
    CM_INDEX        List[Count];
} CM_KEY_FAST_INDEX;

typedef struct _CM_KEY_HASH_INDEX {
    CHAR            Signature[2];
    SHORT           Count;
    CM_HASH_INDEX   List[Count];
} CM_KEY_HASH_INDEX;
"""

c_hivetree = cstruct().load(hivetree_def)

# Stored cell offsets are relative to the first hbin and point at the cell size field
HBIN_OFFSET = 0x1000
CELL_SIZE_LENGTH = 4

HEADER_SIZE = 0x200
CHECKSUM_OFFSET = 0x1FC
BLOCK_SIZE = 0x1000
MAX_CELL_SIZE = 0x1000

KEY_NODE_SIZE = 0x4C
KEY_INDEX_HEADER_SIZE = 4

REGF_SIGNATURE = b"regf"
HBIN_SIGNATURE = b"hbin"

KEY_SYM_LINK = 0x10
KEY_NON_ROOT = 0x20
KEY_ROOT = 0x2C

# Set in the type field when the key name is stored as 8-bit characters
KEY_COMP_NAME = 0x20

NO_OFFSET = 0xFFFFFFFF
