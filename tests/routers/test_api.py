from shore.models.chat import ChatMessage
from shore.store import ChatStore


class TestHealth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "healthy"}


class TestSession:
    def test_state(self, client):
        r = client.get("/api/v1/session/state")
        assert r.status_code == 200
        state = r.json()["state"]
        assert state["chat_id"] is None
        assert state["mode"] == "insert"
        assert state["surface"] == "chat"
        assert any(p["name"] == "OpenAI" for p in state["providers"])

    def test_keys(self, client):
        r = client.post("/api/v1/session/keys", json={"keys": ["esc", "ctrl+h", "2"]})
        assert r.status_code == 200
        body = r.json()
        assert body["commands"] == ["ToggleHistoryPane"]
        assert body["state"]["history_visible"] is False
        assert body["state"]["mode"] == "normal"
        assert body["state"]["prefix"] == "2"

    def test_typed_text(self, client):
        r = client.post("/api/v1/session/keys", json={"keys": ["h", "i", "shift+enter", "!"]})
        assert r.json()["state"]["buffer"] == "hi\n!"

    def test_empty_keys_rejected(self, client):
        r = client.post("/api/v1/session/keys", json={"keys": []})
        assert r.status_code == 422

    def test_quit_ends_session(self, client):
        r = client.post("/api/v1/session/keys", json={"keys": ["esc", "Q", "i"]})
        assert r.json()["commands"] == ["Quit"]
        assert r.json()["state"]["mode"] == "normal"

        r = client.post("/api/v1/session/keys", json={"keys": ["i"]})
        assert r.status_code == 409


class TestChats:
    def test_empty(self, client):
        r = client.get("/api/v1/chats")
        assert r.status_code == 200
        assert r.json() == []

    def test_list_and_filter(self, client, engine):
        store = ChatStore(engine)
        volcano = store.create_chat("Volcano trip")
        store.create_chat("Tax return")

        assert len(client.get("/api/v1/chats").json()) == 2
        r = client.get("/api/v1/chats", params={"q": "volcano", "scope": "titles"})
        assert [c["id"] for c in r.json()] == [volcano.id]

    def test_messages(self, client, engine):
        store = ChatStore(engine)
        chat = store.create_chat("notes")
        store.add_message(ChatMessage.user(chat.id, "remember the milk"))

        r = client.get(f"/api/v1/chats/{chat.id}/messages")
        assert r.status_code == 200
        [message] = r.json()
        assert message["role"] == "user"
        assert message["content"] == "remember the milk"
        assert message["model_id"] is None

    def test_messages_missing_chat(self, client):
        r = client.get("/api/v1/chats/999/messages")
        assert r.status_code == 404

    def test_search(self, client, engine):
        store = ChatStore(engine)
        chat = store.create_chat("Groceries")
        message = store.add_message(ChatMessage.user(chat.id, "buy oat milk"))

        r = client.get("/api/v1/search", params={"q": "milk"})
        assert r.status_code == 200
        hits = r.json()
        assert [(h["chat_id"], h["kind"], h["message_id"]) for h in hits] == [
            (chat.id, "content", message.id)
        ]

    def test_search_bad_scope(self, client):
        r = client.get("/api/v1/search", params={"q": "x", "scope": "everywhere"})
        assert r.status_code == 422
