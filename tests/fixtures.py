"""Shared test data and the in-memory SQS stand-in."""

import uuid

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
SPAN_ID = "00f067aa0ba902b7"


class FakeSqsClient:
    """
    Minimal in-memory SQS client.

    Messages stay in send order; a received message is in flight until it is
    deleted or expire_visibility() is called.
    """

    def __init__(self, fail_batch_entries=0):
        self.messages = []
        self.in_flight = {}
        self.deleted = []
        self.calls = []
        self.fail_batch_entries = fail_batch_entries
        self._receives = 0

    def _store(self, body, attributes, group_id):
        message_id = str(uuid.uuid4())
        self.messages.append({
            "MessageId": message_id,
            "Body": body,
            "MessageAttributes": attributes or {},
            "GroupId": group_id,
        })
        return message_id

    def send_message(self, **kwargs):
        self.calls.append(("send_message", kwargs))
        message_id = self._store(
            kwargs["MessageBody"], kwargs.get("MessageAttributes"), kwargs.get("MessageGroupId"))
        return {"MessageId": message_id}

    def send_message_batch(self, QueueUrl, Entries):
        self.calls.append(("send_message_batch", {"QueueUrl": QueueUrl, "Entries": Entries}))
        successful, failed = [], []
        for index, entry in enumerate(Entries):
            if index < self.fail_batch_entries:
                failed.append({"Id": entry["Id"], "Code": "InternalError", "SenderFault": False})
                continue
            message_id = self._store(
                entry["MessageBody"], entry.get("MessageAttributes"), entry.get("MessageGroupId"))
            successful.append({"Id": entry["Id"], "MessageId": message_id})
        # SQS does not promise response order
        return {"Successful": list(reversed(successful)), "Failed": failed}

    def receive_message(self, **kwargs):
        self.calls.append(("receive_message", kwargs))
        names = kwargs.get("MessageAttributeNames") or []
        out = []
        for message in self.messages:
            if len(out) == kwargs.get("MaxNumberOfMessages", 1):
                break
            if message["MessageId"] in self.in_flight.values():
                continue
            self._receives += 1
            receipt_handle = f"{message['MessageId']}#{self._receives}"
            self.in_flight[receipt_handle] = message["MessageId"]
            attributes = {
                name: value for name, value in message["MessageAttributes"].items()
                if "All" in names or name in names
            }
            raw = {
                "MessageId": message["MessageId"],
                "ReceiptHandle": receipt_handle,
                "Body": message["Body"],
                "Attributes": {"MessageGroupId": message["GroupId"]} if message["GroupId"] else {},
            }
            if attributes:
                raw["MessageAttributes"] = attributes
            out.append(raw)
        return {"Messages": out} if out else {}

    def delete_message(self, QueueUrl, ReceiptHandle):
        self.calls.append(("delete_message", {"QueueUrl": QueueUrl, "ReceiptHandle": ReceiptHandle}))
        message_id = self.in_flight.pop(ReceiptHandle)
        self.messages = [m for m in self.messages if m["MessageId"] != message_id]
        self.deleted.append(message_id)
        return {}

    def expire_visibility(self):
        self.in_flight.clear()

    def calls_to(self, operation):
        return [kwargs for name, kwargs in self.calls if name == operation]
