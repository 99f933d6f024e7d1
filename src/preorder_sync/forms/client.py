from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import requests

from ..domain.mapping import EMAIL_TITLE, NAME_TITLE, QUANTITY_PREFIX, FormResponse, QuestionDef
from ..domain.models import Product
from ..errors import RemoteFetchFailed
from ..logging import get_logger

DEFAULT_BASE_URL = "https://forms.googleapis.com"


class FormsClient:
    """Thin client for the Google Forms REST API (v1) with session, timeouts and logging.

    Only implements the subset we use: form definition, responses, and
    creating an order form from the catalog.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 30,
        page_size: int = 500,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.timeout = int(timeout)
        self.page_size = int(page_size)
        self.log = get_logger("forms-client")
        self.s = session or requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        })

    # ---------- helpers ----------
    def _url(self, path: str) -> str:
        return f"{self.base}{path}"

    def _json(self, form_id: str, r: requests.Response, action: str) -> Dict[str, Any]:
        if not r.ok:
            raise RemoteFetchFailed(form_id, f"Failed to {action}: {r.text}", status_code=r.status_code)
        try:
            body = r.json()
        except ValueError:
            raise RemoteFetchFailed(form_id, f"Failed to parse {action} response", status_code=r.status_code)
        return body if isinstance(body, dict) else {}

    def _get(self, form_id: str, path: str, action: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            r = self.s.get(self._url(path), params=params, timeout=self.timeout)
        except requests.RequestException as e:
            self.log.error(f"GET {path} failed: {e}")
            raise RemoteFetchFailed(form_id, f"Failed to {action}: {e}")
        return self._json(form_id, r, action)

    def _post(self, form_id: str, path: str, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = self.s.post(self._url(path), json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            self.log.error(f"POST {path} failed: {e}")
            raise RemoteFetchFailed(form_id, f"Failed to {action}: {e}")
        return self._json(form_id, r, action)

    # ---------- reading ----------
    def get_form_definition(self, form_id: str) -> List[QuestionDef]:
        """Question items of the form; non-question items are skipped."""
        data = self._get(form_id, f"/v1/forms/{form_id}", "get form details")
        questions: List[QuestionDef] = []
        for item in data.get("items") or []:
            if not isinstance(item, dict):
                continue
            question = (item.get("questionItem") or {}).get("question") or {}
            qid = question.get("questionId")
            if not qid:
                continue
            questions.append(QuestionDef(question_id=str(qid), title=str(item.get("title") or "")))
        self.log.debug(f"Form {form_id}: {len(questions)} question(s)")
        return questions

    def list_responses(self, form_id: str) -> List[FormResponse]:
        """All responses of the form, following pagination."""
        responses: List[FormResponse] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"pageSize": self.page_size}
            if page_token:
                params["pageToken"] = page_token
            data = self._get(form_id, f"/v1/forms/{form_id}/responses", "get responses", params)
            for raw in data.get("responses") or []:
                parsed = parse_response(raw)
                if parsed is not None:
                    responses.append(parsed)
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        self.log.info(f"Form {form_id}: fetched {len(responses)} response(s)")
        return responses

    # ---------- creating ----------
    def create_order_form(self, title: str, products: Iterable[Product]) -> Dict[str, str]:
        """Create a form with name, email and one quantity question per product.

        Returns ``{"form_id", "form_url", "responder_url", "title"}``.
        """
        self.log.info(f"Creating form {title!r}")
        created = self._post("(new)", "/v1/forms", "create form", {"info": {"title": title}})
        form_id = str(created.get("formId") or "")
        if not form_id:
            raise RemoteFetchFailed("(new)", "Form creation returned no formId")
        requests_body = build_question_requests(products)
        self._post(form_id, f"/v1/forms/{form_id}:batchUpdate", "add questions", {"requests": requests_body})
        return {
            "form_id": form_id,
            "form_url": f"https://docs.google.com/forms/d/{form_id}/edit",
            "responder_url": str(created.get("responderUri") or f"https://docs.google.com/forms/d/{form_id}/viewform"),
            "title": title,
        }


def parse_response(raw: Any) -> Optional[FormResponse]:
    """Typed view of one response payload; first text answer per question."""
    if not isinstance(raw, dict) or not raw.get("responseId"):
        return None
    answers: Dict[str, Optional[str]] = {}
    for qid, answer in (raw.get("answers") or {}).items():
        values = ((answer or {}).get("textAnswers") or {}).get("answers") or []
        first = values[0] if values and isinstance(values[0], dict) else {}
        answers[str(qid)] = first.get("value")
    return FormResponse(
        response_id=str(raw["responseId"]),
        answers=answers,
        create_time=raw.get("createTime"),
    )


def _text_question(title: str, index: int, *, required: bool, description: Optional[str] = None) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "title": title,
        "questionItem": {"question": {"required": required, "textQuestion": {"paragraph": False}}},
    }
    if description:
        item["description"] = description
    return {"createItem": {"item": item, "location": {"index": index}}}


def build_question_requests(products: Iterable[Product]) -> List[Dict[str, Any]]:
    reqs = [
        _text_question(NAME_TITLE, 0, required=True),
        _text_question(EMAIL_TITLE, 1, required=True),
    ]
    for idx, p in enumerate(products, start=2):
        prices = [f"{p.currency_code} {p.price:,.2f}"]
        prices.extend(f"{extra.currency_code} {extra.price:,.2f}" for extra in p.prices)
        reqs.append(
            _text_question(
                f"{QUANTITY_PREFIX}{p.name}",
                idx,
                required=False,
                description="Price: " + " / ".join(prices),
            )
        )
    return reqs
