"""Markdown documentation served to overlay host discovery UIs."""

TOPIC_MANAGER_DOCS = """# HelloWorld Topic Manager Documentation

## Overview
The **HelloWorld Topic Manager** (topic: `tm_helloworld`) is a lightweight overlay
protocol that lets users broadcast a short, UTF-8 encoded message to the world
using BRC-48 Pay-to-Push-Drop outputs. Each eligible transaction output becomes a
permanent, verifiable "shout-out" on-chain.

| Requirement | Description |
|-------------|-------------|
| **Protocol ID** | "HelloWorld" |
| **Fields** | *Exactly one (the message)* |
| **Message length** | >= 2 UTF-8 characters |
| **Signature** | ECDSA over the concatenated field data, verified against the locking public key |

## Admission
Every output of a submitted transaction is checked independently. Outputs whose
script does not decode, whose signature does not verify, or whose message is
shorter than two characters are ignored. No previously admitted coins are
retained when they are spent.
"""

LOOKUP_SERVICE_DOCS = """# HelloWorld Lookup Service Documentation

## Overview
The **HelloWorld Lookup Service** (service ID: `ls_helloworld`) lets clients search
the on-chain *Hello-World* messages that were indexed by the **HelloWorld Topic
Manager**. Each record represents a Pay-to-Push-Drop output whose single field is
a UTF-8 message of at least two characters.

## Query
```json
{
  "service": "ls_helloworld",
  "query": {
    "message": "hello",
    "limit": 50,
    "skip": 0,
    "startDate": "2024-01-01T00:00:00Z",
    "endDate": "2024-12-31T23:59:59Z",
    "sortOrder": "desc"
  }
}
```

* `message` - case-insensitive substring to search for. When present the date
  bounds are ignored.
* `limit` / `skip` - pagination, both non-negative. Defaults 50 and 0.
* `startDate` / `endDate` - inclusive ISO-8601 bounds on the indexing time.
* `sortOrder` - `asc` or `desc` (default) by indexing time.

## Answer
An `output-list` whose `outputs` carry `transactionId`, `outputIndex`, `message` and
`createdAt` for each matching record. Spent outputs are removed from the index.
"""
