# Prompts for the contract packet pipeline.
# - PAGE_CLASSIFICATION_PROMPT: batch page classifier (vision)
# - PAGE_EXTRACTION_PROMPT: single-page term extractor (vision)
#
# Both prompts ask for JSON wrapped in <json></json> tags; the parser in
# app.utils.json_parser also accepts fenced or bare JSON.

PROMPT_VERSION = "2025.1"

# =============================================================================
# PAGE CLASSIFICATION PROMPT
# =============================================================================
PAGE_CLASSIFICATION_PROMPT = r"""
You are a U.S. real estate document page classifier. You receive {batch_size}
page images from one transaction packet, in order:
- Image 1 = PDF page {batch_start}
- Image {batch_size} = PDF page {batch_end}

Treat each page independently. Classify from visible content only: title,
footer (form code, revision, "page X of Y"), layout and filled-in fields.
Ignore running headers and footers when judging whether a page has content.

A page is CRITICAL when it carries legally decisive terms or signatures:
- main_contract: the purchase agreement pages with price, dates, financing,
  contingencies, party names or the signature/acceptance block
- counter_offer: any counter offer (seller counter, buyer counter, seller
  multiple counter) that changes terms
- addendum: addenda or amendments that modify specific terms
- broker_info: the page listing brokerages, agents and license numbers

Pages that are boilerplate, disclosures or blank are NOT critical.

For counter offers, set "party" to "buyer" or "seller" when the form states who
is countering (e.g. "Buyer Counter Offer", "BCO", "SCO", "SMCO"); otherwise null.

Respond with JSON only, wrapped in <json></json> tags:
<json>
{{
  "pages": [
    {{
      "pdf_page": <int>,
      "critical": <bool>,
      "role": "main_contract" | "counter_offer" | "addendum" | "broker_info" | null,
      "party": "buyer" | "seller" | null,
      "form_code": "<footer form code, e.g. RPA, SCO, TREC 20-16, or UNKNOWN>",
      "form_page": <int or null>,
      "title": "<short title snippet>",
      "footer_text": "<footer text>",
      "confidence": <0-100>
    }}
  ]
}}
</json>

Return exactly one entry per image, in image order.
"""

# =============================================================================
# PAGE EXTRACTION PROMPT
# =============================================================================
PAGE_EXTRACTION_PROMPT = r"""
You are extracting contract terms from ONE page of a U.S. residential real
estate transaction packet. The page was classified as: {page_label}
(PDF page {page_number}).

Read only what is visibly filled in on this page. Do not infer values from
other pages, and do not guess. Use null for anything not present on this page.

Field guidance:
- buyer_names / seller_names: full legal names as written
- purchase_price, amounts: numbers only, no "$" or commas
- closing_date: a calendar date, or a number of days after acceptance
- financing.loan_type: as written (e.g. "Conventional", "FHA", "VA")
- contingencies.*_days: number of days
- buyer_signature_dates / seller_signature_dates: every date next to a signature
- handwriting_detected: true if any term on the page is handwritten or struck through
- confidence.overall and confidence.field_scores: 0-100, how sure you are of
  each value you reported

Respond with JSON only, wrapped in <json></json> tags:
<json>
{{
  "buyer_names": [<string>] | null,
  "seller_names": [<string>] | null,
  "property_address": <string> | null,
  "purchase_price": <number> | null,
  "earnest_money_deposit": {{"amount": <number> | null, "holder": <string> | null}} | null,
  "closing_date": <string or int> | null,
  "financing": {{"is_all_cash": <bool> | null, "loan_type": <string> | null, "loan_amount": <number> | null}} | null,
  "contingencies": {{"inspection_days": <int> | null, "appraisal_days": <int> | null, "loan_days": <int> | null, "sale_of_buyer_property": <bool> | null}} | null,
  "closing_costs": {{"buyer_pays": [<string>] | null, "seller_pays": [<string>] | null, "seller_credit_amount": <number> | null}} | null,
  "brokers": {{"listing_brokerage": <string> | null, "listing_agent": <string> | null, "selling_brokerage": <string> | null, "selling_agent": <string> | null}} | null,
  "personal_property_included": [<string>] | null,
  "effective_date": <string> | null,
  "escrow_holder": <string> | null,
  "buyer_signature_dates": [<string>] | null,
  "seller_signature_dates": [<string>] | null,
  "handwriting_detected": <bool>,
  "confidence": {{"overall": <0-100>, "field_scores": {{"<field_name>": <0-100>}}}}
}}
</json>
"""

# =============================================================================
# SECOND-TURN EXTRACTION PROMPT
# =============================================================================
SECOND_TURN_PROMPT = r"""
You are re-reading ONE page of a U.S. residential real estate transaction
packet. The page was classified as: {page_label} (PDF page {page_number}).

A previous read of this page produced the values below, but the combined
contract failed validation on these fields: {problem_fields}

Previous values for those fields:
{previous_json}

Look again, carefully, only at those fields. Read what is visibly filled in
on this page, including handwritten or struck-through amendments. If a field
is truly not present on this page, return null for it rather than guessing.

Respond with JSON only, wrapped in <json></json> tags, containing exactly the
fields listed above plus a confidence object:
<json>
{{
  "<field_name>": <value> | null,
  "confidence": {{"overall": <0-100>, "field_scores": {{"<field_name>": <0-100>}}}}
}}
</json>
"""
