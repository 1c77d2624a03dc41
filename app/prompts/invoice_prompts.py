# Prompts for repair-invoice extraction.
# The output schema is rendered from InvoiceExtraction so the prompt and the
# validator can never disagree on field names.

import json

from app.schemas.invoice_extraction import InvoiceExtraction

INVOICE_EXTRACTION_PROMPT = r"""
You extract structured data from automotive repair invoices, work orders and
collision estimates for commercial fleets.

Return ONE JSON object that follows the schema at the end of this message.
Never add commentary or markdown.

RULES
- Capture every data point on the document. Anything without a dedicated
  field goes into "extras" with a field_category of shop, vehicle, customer,
  financial, service or misc.
- Use null for fields that are not on the document. Never guess.
- Money is in dollars as bare numbers (155.00, not "$155" and not cents).
- Dates use YYYY-MM-DD.
- shop_name is the business performing the work, usually the largest text in
  the header.
- grand_total is the final amount owed (Total, Amount Due, Customer Total,
  Invoice Total). Populate it whenever any total is printed.

SERVICES AND LINE ITEMS
- Each job, complaint or damage area becomes a service. Nest its line items
  under it. Flat invoices get a single service named "General Service".
- Record complaint / cause / correction text on the service when present.
- Every line item needs a descriptive "name" taken from its description or
  operation text.
- item_type is one of: labor, part, fee, shop_supply, hazmat, environmental,
  sublet, tire, fluid, filter, discount, tax, misc, unknown.
  Labor carries hours and rate_per_hour; parts carry part_number and brand;
  tires carry size/brand/model/position; fluids carry type/quantity/unit.
  Discounts are negative amounts.

QUALITY
- raw_text holds the full plain text of the document.
- is_valid_invoice is false when the document is not a repair invoice,
  estimate or work order.
- parse_confidence (0 to 1) is your honest confidence in the extraction as a
  whole. Use a low value for illegible scans or partial pages.
"""

EXEMPLAR_INTRO = "Here is an example repair invoice. Study its layout; the next document may use a similar format."

EXEMPLAR_ACKNOWLEDGEMENT = "Understood. I will extract the next invoice into the same JSON schema."

EXTRACTION_REQUEST = "Extract all data from this repair invoice. Return only the JSON object."


def build_system_prompt() -> str:
    """System instruction with the extraction JSON schema appended."""
    schema = json.dumps(InvoiceExtraction.model_json_schema(), separators=(",", ":"))
    return f"{INVOICE_EXTRACTION_PROMPT.strip()}\n\nJSON SCHEMA:\n{schema}"
