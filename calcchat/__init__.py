"""Calculator chat: message store and polling sync API."""
