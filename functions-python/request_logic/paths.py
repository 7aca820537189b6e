"""Firestore document paths used by the backend."""

REQUESTS = "requests"
USERS = "users"
CHATS = "chats"
REVIEWS = "reviews"
OFFERS = "offers"
ACTIONS = "actions"
MESSAGES = "messages"


def request(request_id: str) -> str:
    return f"{REQUESTS}/{request_id}"


def offers(request_id: str) -> str:
    return f"{REQUESTS}/{request_id}/{OFFERS}"


def offer(request_id: str, helper_id: str) -> str:
    return f"{offers(request_id)}/{helper_id}"


def actions(request_id: str) -> str:
    return f"{REQUESTS}/{request_id}/{ACTIONS}"


def action(request_id: str, action_id: str) -> str:
    return f"{actions(request_id)}/{action_id}"


def user(user_id: str) -> str:
    return f"{USERS}/{user_id}"


# chats share their id with the request they belong to
def chat(chat_id: str) -> str:
    return f"{CHATS}/{chat_id}"


def messages(chat_id: str) -> str:
    return f"{CHATS}/{chat_id}/{MESSAGES}"


def message(chat_id: str, message_id: str) -> str:
    return f"{messages(chat_id)}/{message_id}"


def parent_collection(path: str) -> str:
    return path.rsplit("/", 1)[0]


def doc_id(path: str) -> str:
    return path.rsplit("/", 1)[-1]
