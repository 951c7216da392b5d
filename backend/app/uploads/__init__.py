"""
Uploads

Prescription file storage for quotation requests.
"""

from app.uploads.prescriptions import PrescriptionUploader, get_prescription_uploader, set_prescription_uploader

__all__ = ["PrescriptionUploader", "get_prescription_uploader", "set_prescription_uploader"]
