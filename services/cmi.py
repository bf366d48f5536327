"""
CMI (Centre Monétique Interbancaire) 3-D Pay Hosting adapter.

Everything here is pure: the merchant configuration is an immutable
``CMIConfig`` built once in ``create_app`` and passed in explicitly.

Hash scheme (gateway "ver3" style, must stay byte-compatible):
    sort field names, join ``name=value`` with ``|``, append ``|<secret>``,
    SHA-512 over UTF-8, base64. The HASH field itself is never part of the
    input.
"""
import base64
import hashlib
import hmac
from dataclasses import dataclass
from html import escape
from typing import Dict, Mapping, Optional

HASH_FIELDS = ("HASH", "hash")

# Allow-lists; anything else is a failure.
SUCCESS_RESPONSE_CODES = frozenset({"Approved", "00", "0"})
SUCCESS_MD_STATUSES = frozenset({"1", "2", "3", "4"})

SUCCESS_MESSAGE = "Paiement effectué avec succès"
UNKNOWN_ERROR_MESSAGE = "Erreur de paiement inconnue"

ERROR_MESSAGES = {
    "01": "Carte refusée par la banque",
    "02": "Contactez votre banque",
    "03": "Marchand invalide",
    "04": "Confisquer la carte",
    "05": "Transaction refusée",
    "06": "Erreur générale",
    "07": "Confisquer la carte (conditions spéciales)",
    "12": "Transaction invalide",
    "13": "Montant invalide",
    "14": "Numéro de carte invalide",
    "15": "Banque émettrice inconnue",
    "17": "Annulation par le client",
    "19": "Répéter la transaction",
    "20": "Réponse invalide",
    "21": "Aucune action entreprise",
    "25": "Enregistrement de transaction introuvable",
    "28": "Fichier temporairement indisponible",
    "30": "Erreur de format de message",
    "41": "Carte perdue - confisquer",
    "43": "Carte volée - confisquer",
    "51": "Fonds insuffisants",
    "54": "Carte expirée",
    "57": "Transaction non autorisée pour ce porteur",
    "58": "Transaction non autorisée pour ce terminal",
    "61": "Limite de montant dépassée",
    "62": "Carte restreinte",
    "65": "Limite de fréquence dépassée",
    "75": "Tentatives de saisie du PIN dépassées",
    "76": "Compte déjà lettré",
    "77": "Référence du porteur incorrecte",
    "78": "Compte bloqué (premier usage)",
    "81": "Problème cryptographique",
    "82": "CVV incorrect",
    "83": "PIN incorrect",
    "84": "Echec de l'authentification",
    "85": "Pas de raison de refus",
    "91": "Système émetteur indisponible",
    "92": "Type de transaction invalide",
    "96": "Dysfonctionnement système",
    "99": "Erreur de configuration",
}


@dataclass(frozen=True)
class CMIConfig:
    merchant_id: str
    secret_key: str
    gateway_url: str
    ok_url: str
    fail_url: str
    shop_url: str
    currency: str = "504"
    encoding: str = "UTF-8"

    @classmethod
    def from_mapping(cls, config: Mapping) -> "CMIConfig":
        base_url = (config.get("APP_BASE_URL") or "").rstrip("/")
        callback_url = f"{base_url}/payments/cmi/callback"
        return cls(
            merchant_id=config.get("CMI_MERCHANT_ID") or "",
            secret_key=config.get("CMI_SECRET_KEY") or "",
            gateway_url=config.get("CMI_GATEWAY_URL") or "",
            ok_url=config.get("CMI_OK_URL") or callback_url,
            fail_url=config.get("CMI_FAIL_URL") or callback_url,
            shop_url=config.get("CMI_SHOP_URL") or base_url,
            currency=config.get("CMI_CURRENCY") or "504",
        )

    def is_configured(self) -> bool:
        return bool(self.merchant_id and self.secret_key and self.gateway_url)


@dataclass(frozen=True)
class Outcome:
    success: bool
    order_id: str
    code: str
    message: str
    transaction_id: str
    md_status: Optional[str] = None
    auth_code: Optional[str] = None


def compute_hash(fields: Mapping[str, str], secret_key: str) -> str:
    payload = "|".join(
        f"{name}={fields[name]}" for name in sorted(fields) if name not in HASH_FIELDS
    )
    payload += f"|{secret_key}"
    return base64.b64encode(hashlib.sha512(payload.encode("utf-8")).digest()).decode("ascii")


def build_request(
    config: CMIConfig,
    amount: int,
    order_id: str,
    customer_email: str,
    customer_name: str = "",
    customer_phone: str = "",
    language: str = "fr",
    description: Optional[str] = None,
) -> Dict[str, str]:
    """Gateway form fields for one payment attempt; ``amount`` in centimes."""
    fields = {
        "clientid": config.merchant_id,
        "amount": str(int(amount)),
        "oid": order_id,
        "okUrl": config.ok_url,
        "failUrl": config.fail_url,
        "shopurl": config.shop_url,
        "currency": config.currency,
        "lang": language or "fr",
        "encoding": config.encoding,
        "email": customer_email or "",
        "BillToName": customer_name or "",
        "tel": customer_phone or "",
        "storetype": "3D_PAY_HOSTING",
        "hashAlgorithm": "ver3",
        "refreshtime": "5",
        "AutoRedirect": "1",
    }
    if description:
        fields["trantype"] = "Auth"
        fields["instalment"] = ""
        fields["description"] = description

    fields["HASH"] = compute_hash(fields, config.secret_key)
    return fields


def render_form(config: CMIConfig, fields: Mapping[str, str]) -> str:
    inputs = "\n".join(
        f'      <input type="hidden" name="{escape(name)}" value="{escape(value)}" />'
        for name, value in fields.items()
    )
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <title>Redirection vers CMI...</title>
  </head>
  <body style="font-family: system-ui; text-align: center; padding: 50px;">
    <h2>Redirection vers le paiement sécurisé...</h2>
    <p>Veuillez patienter, vous allez être redirigé automatiquement.</p>
    <form id="cmiForm" action="{escape(config.gateway_url)}" method="POST">
{inputs}
    </form>
    <script>document.getElementById('cmiForm').submit();</script>
  </body>
</html>
"""


def received_hash(fields: Mapping[str, str]) -> str:
    for name in HASH_FIELDS:
        if fields.get(name):
            return fields[name]
    return ""


def verify_callback(config: CMIConfig, fields: Mapping[str, str]) -> bool:
    """Recompute the hash over every field but HASH and compare in constant time."""
    expected = received_hash(fields)
    if not expected or not config.secret_key:
        return False
    actual = compute_hash(fields, config.secret_key)
    return hmac.compare_digest(actual.encode("ascii"), expected.encode("utf-8"))


def interpret_outcome(fields: Mapping[str, str]) -> Outcome:
    """Only call after ``verify_callback`` succeeded."""
    response = fields.get("Response") or ""
    md_status = fields.get("mdStatus")
    success = response in SUCCESS_RESPONSE_CODES and md_status in SUCCESS_MD_STATUSES
    # ProcReturnCode carries the numeric reason; Response is only Approved/Declined/Error
    code = fields.get("ProcReturnCode") or response
    return Outcome(
        success=success,
        order_id=fields.get("oid") or fields.get("orderId") or "",
        code=code,
        message=status_message(success, code, fields.get("mdErrorMsg") or fields.get("ErrMsg")),
        transaction_id=fields.get("TransId") or fields.get("xid") or fields.get("AuthCode") or "",
        md_status=md_status,
        auth_code=fields.get("AuthCode"),
    )


def status_message(success: bool, code: str, gateway_message: Optional[str] = None) -> str:
    if success:
        return SUCCESS_MESSAGE
    return ERROR_MESSAGES.get(code) or gateway_message or UNKNOWN_ERROR_MESSAGE


def redact(fields: Mapping[str, str]) -> Dict[str, str]:
    """Copy of a callback payload safe to persist or log."""
    return {k: ("<redacted>" if k in HASH_FIELDS else v) for k, v in fields.items()}
