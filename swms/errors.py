"""
Typed errors for the ledger core.

Every error carries a machine-readable ``code`` so the HTTP layer can map it
to a status without parsing messages:

    LedgerError
    +-- ValidationError           (VALIDATION_ERROR)      -> 422
    +-- NotFoundError             (NOT_FOUND)             -> 404
    +-- IdempotencyConflictError  (IDEMPOTENCY_CONFLICT)  -> 409
    +-- SettlementMismatchError   (SETTLEMENT_MISMATCH)   -> 409
    +-- TransactionFailure        (TRANSACTION_FAILURE)   -> 500
"""


class LedgerError(Exception):
    code: str = "LEDGER_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **data):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.data}


class ValidationError(LedgerError):
    code = "VALIDATION_ERROR"
    status_code = 422


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class IdempotencyConflictError(LedgerError):
    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409

    def __init__(self, idempotency_key: str, existing_id: str):
        super().__init__(
            "idempotency key already used for a different request",
            idempotency_key=idempotency_key,
            existing_id=existing_id,
        )


class SettlementMismatchError(LedgerError):
    code = "SETTLEMENT_MISMATCH"
    status_code = 409

    def __init__(self, settlement_id: str, supplied: str, linked: str):
        super().__init__(
            "settlement supply total does not match linked outbound amounts",
            settlement_id=settlement_id,
            supplied=supplied,
            linked=linked,
        )


class TransactionFailure(LedgerError):
    # detail stays in the server log; the caller only learns which op failed
    code = "TRANSACTION_FAILURE"
    status_code = 500

    def __init__(self, op: str):
        super().__init__("transaction failed", op=op)
        self.op = op
