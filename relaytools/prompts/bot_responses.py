from decimal import Decimal
from typing import List
from relaytools.configuration.constants import AttestationFlag
from relaytools.models.models import NodeState

BOT_NAME = 'Relaybot'

new_unverified_response = f"""Hi! I'm {BOT_NAME}. To join the relay campaign, post an attestation that
mentions the campaign tag and your relay address, then send me the link to it."""

attestation_in_progress_response = "Thanks for the link, I'm verifying your attestation now. This can take a moment."

attestation_succeeded_response = "Your attestation checks out. Now checking your on-chain balance."

FLAG_DESCRIPTIONS = {
    AttestationFlag.HAS_TAG: "it is missing the campaign hashtag",
    AttestationFlag.HAS_MENTION: "it is missing the campaign mention",
    AttestationFlag.SAME_NODE: "it does not contain the address you are messaging me from",
}

online_response = "You are online! I'm going to relay a message through your node now. Keep it running."

relaying_in_progress_response = "I'm currently relaying a message through your node, please wait for it to complete."

relaying_succeeded_response = "Your node relayed my message successfully, you have been rewarded."

relaying_failed_response = """I didn't get my relayed message back in time. No worries, your node stays registered
and I'll try relaying through it again later."""

def attestation_failed_response(missing: List[AttestationFlag]) -> str:
    reasons = '; '.join(FLAG_DESCRIPTIONS[flag] for flag in missing) or "it could not be read"
    return f"I couldn't verify your attestation: {reasons}. Please fix it and send me the link again."

def balance_failed_response(balance: Decimal, threshold: Decimal) -> str:
    return (
        f"Your node's account holds {balance}, but at least {threshold} is required. "
        f"Please fund your node and send me your attestation link again."
    )

def balance_succeeded_response(balance: Decimal) -> str:
    return f"Your node's account holds {balance}. You are now verified and will be checked for relaying regularly."

def verified_response(score: int) -> str:
    return f"Your score is now {score} points."

def channel_opened_response(channel_id: str) -> str:
    return f"Opened a payment channel to you at {channel_id}"

def relay_test_message(address: str) -> str:
    """Body of the message we send to ourselves through a participant"""
    return f"Relaying package to {address}"

STATUS_SUMMARIES = {
    NodeState.NEW_UNVERIFIED: "not verified",
    NodeState.ATTESTATION_FAILED: "attestation rejected",
    NodeState.ATTESTATION_SUCCEEDED: "attestation verified, balance pending",
    NodeState.BALANCE_FAILED: "balance too low",
    NodeState.BALANCE_SUCCEEDED: "verified",
}

def status_response(state: NodeState, score: int) -> str:
    summary = STATUS_SUMMARIES.get(state, state.value.replace('_', ' '))
    return f"Status: {summary}. Score: {score}."

balance_unavailable_response = "I couldn't check your on-chain balance right now. Please send me your attestation link again later."
