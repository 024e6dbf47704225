import re

ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def make_app(client, name="Work"):
    r = client.post("/apps", json={"name": name})
    assert r.status_code == 201
    return r.json()


def make_todo(client, app_id, name="Todo", **fields):
    r = client.post(f"/apps/{app_id}/todos/new", json={"name": name, **fields})
    assert r.status_code == 201
    return r.json()


def todo_ids(response):
    return [t["id"] for t in response.json()]
