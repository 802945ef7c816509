class PlantDoctorError(Exception):
    """Base class for failures raised while serving a diagnosis request."""


class ContentStoreError(PlantDoctorError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InferenceError(PlantDoctorError):
    pass
