"""
    Mail2PushForwarder:
                    Watches IMAP mailboxes (IDLE or polling) and forwards every
                    unread mail to a push webhook, marking it read once the push
                    was accepted.
"""

__appname__ = "Mail to Push Forwarder"
__version__ = "0.5.0"
