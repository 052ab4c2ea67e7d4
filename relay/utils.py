"""
Utility functions for connection tagging
"""
import random
import string


def generate_connection_id(length: int = 8) -> str:
    """Generate a short random tag used to tell connections apart in logs"""
    alphabet = string.ascii_lowercase + string.digits
    return "conn_" + "".join(random.choice(alphabet) for _ in range(length))
