"""
Transfer: pushes cached hole crops to the companion device

- TransferOrchestrator: sequential, best-effort handoff of crops to a MessagingChannel
- HttpRelayChannel: queued HTTP delivery to the companion's /companion/files endpoint
- CompanionReceiver: companion-side cache fed by received files
"""
