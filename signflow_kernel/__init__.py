"""
Signflow Kernel

The envelope lifecycle and completion-consistency core of a multi-party
document signing workflow:
- Closed status enumerations and a single state machine authority
- Atomic signer actions (sign / decline) with completion aggregation
- Document-row lock discipline and optimistic versioning
- Append-only, hash-chained audit trail per document
"""

__version__ = "0.1.0"
