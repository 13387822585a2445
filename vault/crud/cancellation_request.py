from vault.crud.base import CRUDBase
from vault.models.cancellation_request import CancellationRequest
from vault.schemas.cancellation_request import CancellationRequestCreate, CancellationRequestUpdate


class CRUDCancellationRequest(CRUDBase[CancellationRequest, CancellationRequestCreate, CancellationRequestUpdate]):
    pass


cancellation_request_crud = CRUDCancellationRequest(CancellationRequest)
