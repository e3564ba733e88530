ALLOWED_ORIGIN = "http://localhost:5173"


def create_task(client, title="Buy milk"):
    r = client.post("/api/tasks", json={"title": title})
    assert r.status_code == 201
    return r.json()["data"]
