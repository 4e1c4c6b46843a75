import random
import uuid


def generate_key(length):
    return ''.join(random.choices('0123456789', k=length))


def generate_conversation_id():
    return f"CONV-{uuid.uuid4().hex[:16]}"


def generate_message_id():
    return f"MSG-{uuid.uuid4().hex[:20]}"


def generate_subscription_id():
    return f"SUB-{generate_key(10)}"
