from .models import AcquisitionResult, Credentials, ErrorKind

__all__ = ["AcquisitionResult", "Credentials", "ErrorKind"]
