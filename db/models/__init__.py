from db.models.phone_number import PhoneNumber
from db.models.phone_message import PhoneMessage

__all__ = [
    "PhoneNumber",
    "PhoneMessage",
]
