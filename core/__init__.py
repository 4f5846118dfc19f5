from .policy          import PolicyStore
from .content_decoder import decode_for_inspection, is_encoded

__all__ = ["PolicyStore", "decode_for_inspection", "is_encoded"]
