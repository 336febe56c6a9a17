from fastapi import HTTPException, status


class StorageUnavailableError(Exception):
    """The data store cannot be reached. Fatal for every batch operation."""


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

