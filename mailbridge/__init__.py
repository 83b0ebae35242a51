"""MailBridge - answer labeled Gmail messages with a sandboxed agent.

Key Components:
    - EmailChannel: polling loop from a Gmail label to the agent and back
    - CredentialManager: OAuth artifacts and token rotation
    - DedupGate: at-most-once claim per message
    - SenderRouter: per-sender workspace and session
"""

__version__ = "0.1.0"
