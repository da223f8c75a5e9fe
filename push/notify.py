import json

import requests

from push import variables

PASS = variables.NOTIFY_PASS
SERVER_URL = variables.SERVER_URL.rstrip("/")


def send_notification(message: str, title: str, topic: str = variables.DEFAULT_TOPIC, url: str | None = None):
    """
    Broadcast a notification to every subscriber of ``topic`` through /notify
    """
    data = {"title": title, "body": message, "topic": topic}
    if url:
        data["url"] = url

    response = requests.post(
        f"{SERVER_URL}/notify",
        headers={"Content-Type": "application/json", "Authorization": f"Bearer {PASS}"},
        data=json.dumps(data),
        timeout=60,
    )

    if response.status_code == 200:
        res = response.json()
        print(f"✅ Sent to {res.get('sent', 0)} of {res.get('total', 0)} subscribers ({res.get('failed', 0)} failed)")
        return res

    print(f"❌ Error {response.status_code}: {response.text}")
    return None


def start():
    while True:
        msg = input("Notification text: ").strip()
        title = input("Title: ").strip()
        topic = input(f"Topic [{variables.DEFAULT_TOPIC}]: ").strip() or variables.DEFAULT_TOPIC
        if msg and title:
            send_notification(msg, title, topic)
        else:
            print("⚠️ Title and text cannot be empty.")


if __name__ == "__main__":
    start()
