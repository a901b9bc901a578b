"""
In-process publish/subscribe channel.

The local store sends ``document_changed`` once per written key, after the
transaction committed and the mutation lock was released:

    document_changed.send(store, key="proposals")

Subscribers must not assume they run on any particular thread.
"""

from blinker import Namespace

_signals = Namespace()

document_changed = _signals.signal("document-changed")
