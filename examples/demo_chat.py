"""
sealed_chat | Live Demo: Alice and Bob
======================================
Run:  python examples/demo_chat.py

Registers two accounts against the in-memory backend, sends a text and a
file from Alice to Bob, then shows Bob's conversation before and after the
user-triggered decrypt, and Alice's view of her own sent messages.
"""

import sys, os, time
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sealed_chat import (InMemoryBackend, MemoryKeyStore, PayloadType,
                         SecureChatClient, Settings, configure_logging)

LINE = "═" * 70

def header(title):
    print(f"\n{LINE}")
    print(f"  {title}")
    print(LINE)

def ok(label, value=""):
    print(f"  ✓  {label}{f': {value}' if value else ''}")


settings = Settings.from_env()
configure_logging(settings.log_level)

backend = InMemoryBackend()
alice   = SecureChatClient(backend, MemoryKeyStore(), settings)
bob     = SecureChatClient(backend, MemoryKeyStore(), settings)

# ── Registration ─────────────────────────────────────────────────────────────
header("Registration (RSA-2048 keypairs)")
t0 = time.perf_counter()
alice.register("alice@example.com", "correct horse")
bob.register("bob@example.com", "battery staple")
ok("Alice", alice.user_id)
ok("Bob",   bob.user_id)
ok("Keygen", f"{(time.perf_counter() - t0) * 1000:.0f} ms for two accounts")

# ── Sending ──────────────────────────────────────────────────────────────────
header("Alice sends a text and a file")
alice.send_text(bob.user_id, "hello Bob, this never touches the server in clear")
report = os.urandom(256 * 1024)
alice.send_attachment(bob.user_id, report, "report.bin", PayloadType.FILE)
stored = backend.fetch_messages(alice.user_id, bob.user_id)
for m in stored:
    ok(f"Stored {m.envelope.type.value}", f"wrapped key {len(m.envelope.wrapped_key)}B, "
                                          f"iv {len(m.envelope.iv)}B")

# ── Bob's view ───────────────────────────────────────────────────────────────
header("Bob's conversation")
with bob.open_conversation(alice.user_id) as conv:
    conv.refresh()
    for line in conv.render():
        ok("Before decrypt", line)
    t0 = time.perf_counter()
    resolved = conv.decrypt_all().result()
    ok("Decrypt all", f"{resolved} message(s) in {(time.perf_counter() - t0) * 1000:.1f} ms")
    for line in conv.render():
        ok("After decrypt", line)
    file_msg = next(m for m, _ in conv.messages() if m.envelope.type is PayloadType.FILE)
    data = conv.load_attachment(file_msg.message_id).result()
    ok("Attachment", f"{len(data)} bytes, matches: {data == report}")

# ── Alice's view ─────────────────────────────────────────────────────────────
header("Alice's conversation (own messages are wrapped for Bob only)")
with alice.open_conversation(bob.user_id) as conv:
    conv.refresh()
    conv.decrypt_all().result()
    for line in conv.render():
        ok("Sent", line)

print(f"\n{LINE}\n")
