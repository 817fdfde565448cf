"""
Typed Exception Hierarchy for the Signflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every caller of the kernel (an HTTP layer, a sweep, a test) needs to decide
what to do with a failure without parsing message strings:

  - client-caused errors are returned to the caller as-is
  - concurrency errors are retried
  - storage errors are logged and the unit of work is skipped

So:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        aggregator.sign(signer_id, artifact_ref)
    except AlreadyActedError as e:
        api_response(status=409, code=e.code, signer=str(e.signer_id))
    except InvalidStateError as e:
        api_response(status=400, code=e.code, status_now=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SignflowError:

    SignflowError (base)
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- EnvelopeNotFoundError
    |   +-- SignerNotFoundError
    |   +-- SignatureFieldNotFoundError
    |
    +-- InvalidStateError
    |   +-- IllegalTransitionError
    |
    +-- AlreadyActedError
    +-- ArtifactMissingError
    |
    +-- ValidationError
    |   +-- InvalidSignerError
    |   +-- InvalidSignatureFieldError
    |   +-- InvalidExpiryError
    |   +-- InvalidDocumentError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |       +-- BusyError
    |
    +-- StorageFailureError
    |   +-- ArtifactStorageError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | DOCUMENT_NOT_FOUND          | Unknown id, or owned by another org
                | ENVELOPE_NOT_FOUND          | Unknown id, or owned by another org
                | SIGNER_NOT_FOUND            | Unknown signer id
                | SIGNATURE_FIELD_NOT_FOUND   | Unknown field id
----------------|-----------------------------|-----------------------------------------
State           | INVALID_STATE               | Action on a terminal / unsuitable entity
                | ILLEGAL_TRANSITION          | Transition not in the lifecycle table
                | ALREADY_ACTED               | Signer already signed or declined
                | ARTIFACT_MISSING            | SIGN without a rendered artifact
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_SIGNER              | Missing / malformed / duplicate email
                | INVALID_SIGNATURE_FIELD     | Bad page, geometry or field kind
                | INVALID_EXPIRY              | expires_at not in the future
                | INVALID_DOCUMENT            | Upload without title or file reference
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONFLICT                    | Concurrent modification, retries spent
                | BUSY                        | Lock not acquired within the timeout
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_FAILURE             | Entity Store unavailable
                | ARTIFACT_STORAGE_FAILURE    | Artifact could not be archived
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. NotFound / InvalidState / AlreadyActed / ArtifactMissing / Validation are
   client-caused: return them to the caller, never retry.

2. ConflictError is retried internally by TransactionRunner with bounded
   backoff; callers only see it once the retry budget is spent.

3. StorageFailureError inside a sweep is logged and the envelope is skipped;
   the next scheduled run picks it up again.

===============================================================================
"""


class SignflowError(Exception):
    """
    Base exception for all signflow errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SIGNFLOW_ERROR"


# Not found


class NotFoundError(SignflowError):
    """Base exception for missing (or foreign-organization) entities."""

    code: str = "NOT_FOUND"


class DocumentNotFoundError(NotFoundError):
    """Document does not exist or is not owned by the caller's organization."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class EnvelopeNotFoundError(NotFoundError):
    """Envelope does not exist or is not owned by the caller's organization."""

    code: str = "ENVELOPE_NOT_FOUND"

    def __init__(self, envelope_id: str):
        self.envelope_id = envelope_id
        super().__init__(f"Envelope not found: {envelope_id}")


class SignerNotFoundError(NotFoundError):
    """Signer with given ID was not found."""

    code: str = "SIGNER_NOT_FOUND"

    def __init__(self, signer_id: str):
        self.signer_id = signer_id
        super().__init__(f"Signer not found: {signer_id}")


class SignatureFieldNotFoundError(NotFoundError):
    """Signature field with given ID was not found."""

    code: str = "SIGNATURE_FIELD_NOT_FOUND"

    def __init__(self, field_id: str):
        self.field_id = field_id
        super().__init__(f"Signature field not found: {field_id}")


# State


class InvalidStateError(SignflowError):
    """
    Action attempted on an entity whose current status does not allow it.

    Raised for every late action against a terminal envelope (completed,
    declined, revoked, expired, archived).
    """

    code: str = "INVALID_STATE"

    def __init__(self, entity_type: str, entity_id: str, status: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        self.reason = reason
        super().__init__(
            f"{entity_type} {entity_id} is {status}: {reason}"
        )


class IllegalTransitionError(InvalidStateError):
    """Requested status change is not in the lifecycle table."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            entity_type,
            entity_id,
            from_status,
            f"transition {from_status} -> {to_status} is not permitted",
        )


class AlreadyActedError(SignflowError):
    """Signer has already signed or declined (duplicate submit)."""

    code: str = "ALREADY_ACTED"

    def __init__(self, signer_id: str, status: str):
        self.signer_id = signer_id
        self.status = status
        super().__init__(f"Signer {signer_id} has already acted: {status}")


class ArtifactMissingError(SignflowError):
    """SIGN requested without a rendered signature artifact."""

    code: str = "ARTIFACT_MISSING"

    def __init__(self, signer_id: str):
        self.signer_id = signer_id
        super().__init__(f"Signing {signer_id} requires an artifact reference")


# Validation


class ValidationError(SignflowError):
    """Base exception for malformed client input."""

    code: str = "VALIDATION_ERROR"


class InvalidSignerError(ValidationError):
    """Signer specification is missing data or duplicates another signer."""

    code: str = "INVALID_SIGNER"

    def __init__(self, reason: str, email: str | None = None):
        self.reason = reason
        self.email = email
        who = f" {email}" if email else ""
        super().__init__(f"Invalid signer{who}: {reason}")


class InvalidSignatureFieldError(ValidationError):
    """Signature field placement or kind is invalid."""

    code: str = "INVALID_SIGNATURE_FIELD"

    def __init__(self, reason: str, field_index: int | None = None):
        self.reason = reason
        self.field_index = field_index
        where = f" #{field_index}" if field_index is not None else ""
        super().__init__(f"Invalid signature field{where}: {reason}")


class InvalidDocumentError(ValidationError):
    """Uploaded document is missing its title or file reference."""

    code: str = "INVALID_DOCUMENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid document: {reason}")


class InvalidExpiryError(ValidationError):
    """Envelope expiry is not in the future."""

    code: str = "INVALID_EXPIRY"

    def __init__(self, expires_at: str, now: str):
        self.expires_at = expires_at
        self.now = now
        super().__init__(f"expires_at {expires_at} is not after {now}")


# Concurrency


class ConcurrencyError(SignflowError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """
    Transaction could not commit because of a concurrent modification.

    Raised by TransactionRunner after its retry budget is spent.
    """

    code: str = "CONFLICT"

    def __init__(self, operation: str, attempts: int, detail: str = ""):
        self.operation = operation
        self.attempts = attempts
        self.detail = detail
        super().__init__(
            f"{operation} conflicted with a concurrent transaction "
            f"after {attempts} attempt(s){': ' + detail if detail else ''}"
        )


class BusyError(ConflictError):
    """Row lock could not be acquired within the lock timeout."""

    code: str = "BUSY"


# Storage


class StorageFailureError(SignflowError):
    """Entity Store is unavailable or failed for a non-concurrency reason."""

    code: str = "STORAGE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


class ArtifactStorageError(StorageFailureError):
    """Artifact store could not move or locate an artifact."""

    code: str = "ARTIFACT_STORAGE_FAILURE"

    def __init__(self, artifact_ref: str, detail: str):
        self.artifact_ref = artifact_ref
        super().__init__("archive_artifact", f"{artifact_ref}: {detail}")


# Audit


class AuditError(SignflowError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, document_id: str, seq: int, expected_hash: str, actual_hash: str):
        self.document_id = document_id
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken for document {document_id} at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Immutability


class ImmutabilityError(SignflowError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete a protected record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
