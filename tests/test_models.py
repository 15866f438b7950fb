"""
Tests for Models

Entitlements, the case namespace, case filters, roster parsing and the
helpers that normalize document names and references.
"""

import base64

import pytest

from casegate.models.cases import CaseFilter, CaseNamespace, Entitlement
from casegate.models.users import StaffMember
from casegate.retrieval.keywords import (
    keyword_coverage,
    normalize_separators,
    reduce_keywords,
)
from casegate.storage.paths import decode_parent_id, to_storage_path


class TestEntitlement:
    """Tests for the All | Specific entitlement variant."""

    def test_specific_permits_only_listed_cases(self):
        entitlement = Entitlement.of(["100", "200"])

        assert entitlement.permits("100")
        assert entitlement.permits("200")
        assert not entitlement.permits("300")
        assert not entitlement.permits(None)

    def test_all_permits_everything_including_caseless(self):
        entitlement = Entitlement.everything()

        assert entitlement.permits("999")
        assert entitlement.permits(None)

    def test_claim_round_trip(self):
        assert Entitlement.from_claim(["*"]) == Entitlement.everything()
        assert Entitlement.of(["200", "100", "30"]).to_claim() == ["30", "100", "200"]
        assert Entitlement.from_claim(["100", "200"]) == Entitlement.of({"200", "100"})

    def test_equality_is_set_equality(self):
        assert Entitlement.of(["100", "200"]) == Entitlement.of(["200", "100", "100"])
        assert Entitlement.of(["100"]) != Entitlement.of(["100", "200"])
        assert Entitlement.everything() != Entitlement.of(["100"])

    def test_empty(self):
        assert Entitlement.nothing().is_empty
        assert Entitlement.of(["", "  "]).is_empty
        assert not Entitlement.everything().is_empty

    def test_describe(self):
        assert Entitlement.of(["200", "100"]).describe() == "[100, 200]"

    def test_is_immutable(self):
        entitlement = Entitlement.of(["100"])
        with pytest.raises(Exception):
            entitlement.cases = frozenset({"200"})


class TestCaseNamespace:
    """Tests for deriving cases from storage paths."""

    def test_case_of_leading_segment(self, namespace):
        assert namespace.case_of("100/Pleadings/Complaint.pdf") == "100"
        assert namespace.case_of("/200/letter.docx") == "200"

    def test_paths_without_case(self, namespace):
        assert namespace.case_of("templates/letter.docx") is None
        assert namespace.case_of("100") is None
        assert namespace.case_of("") is None
        assert namespace.case_of(None) is None

    def test_custom_pattern(self):
        namespace = CaseNamespace(r"^[A-Z]{2}-\d{4}$")

        assert namespace.case_of("NY-2024/file.pdf") == "NY-2024"
        assert namespace.case_of("100/file.pdf") is None

    def test_prefixes_for(self, namespace):
        assert namespace.prefixes_for(Entitlement.of(["200", "100"])) == ["100/", "200/"]
        assert namespace.prefixes_for(Entitlement.everything()) is None
        assert namespace.prefixes_for(Entitlement.nothing()) == []


class TestCaseFilter:
    """Tests for the case filter sent to retrieval collaborators."""

    def test_omitted_for_all_cases(self):
        assert CaseFilter.for_entitlement(Entitlement.everything()) is None

    def test_odata(self):
        case_filter = CaseFilter.for_entitlement(Entitlement.of(["200", "100"]))

        assert case_filter.to_odata("case_number") == "case_number eq '100' or case_number eq '200'"

    def test_odata_escapes_quotes(self):
        case_filter = CaseFilter(cases=("O'Brien",))

        assert case_filter.to_odata("case") == "case eq 'O''Brien'"

    def test_attribute_filter(self):
        case_filter = CaseFilter(cases=("100", "200"))

        assert case_filter.to_attribute_filter("case_number") == {
            "type": "or",
            "filters": [
                {"type": "eq", "key": "case_number", "value": "100"},
                {"type": "eq", "key": "case_number", "value": "200"},
            ],
        }
        assert CaseFilter(cases=("100",)).to_attribute_filter("k") == {"type": "eq", "key": "k", "value": "100"}

    def test_str(self):
        assert str(CaseFilter(cases=("100", "200"))) == "caseId == 100 OR caseId == 200"


class TestStaffMember:
    """Tests for parsing roster entries."""

    def test_authority_native_shape(self):
        member = StaffMember.model_validate({
            "userID": 42,
            "email": "  Ana.Lopez@Firm.TEST ",
            "firstName": "Ana",
            "lastName": "Lopez",
            "role": "Paralegal",
        })

        assert member.user_id == "42"
        assert member.email == "ana.lopez@firm.test"
        assert member.name == "Ana Lopez"
        assert member.identity_key == "id:42"

    def test_compact_shape(self):
        member = StaffMember.model_validate({"userId": "7", "email": "b@x.test", "name": "B", "role": "Attorney"})

        assert member.user_id == "7"
        assert member.role == "Attorney"

    def test_email_only_identity(self):
        member = StaffMember.model_validate({"email": "C@X.test"})

        assert member.user_id is None
        assert member.identity_key == "email:c@x.test"

    def test_no_identity(self):
        assert StaffMember.model_validate({"name": "Nobody"}).identity_key is None


class TestKeywords:
    """Tests for keyword reduction of document names."""

    def test_strips_extension_dates_and_short_tokens(self):
        keywords = reduce_keywords("2023-04-11 Deposition Transcript of Dr. Smith_final.pdf")

        assert keywords == ["deposition", "transcript", "smith", "final"]

    def test_keeps_five_longest_in_order(self):
        keywords = reduce_keywords("alpha bravo charlie delta echoes foxtrot golf hotel")

        assert keywords == ["alpha", "bravo", "charlie", "echoes", "foxtrot"]

    def test_drops_compact_dates_and_numbers(self):
        assert reduce_keywords("Invoice 20230115 12345 Acme.pdf") == ["invoice", "acme"]

    def test_coverage(self):
        assert keyword_coverage(["settlement", "letter"], "Settlement Letter 2023.docx") == 1.0
        assert keyword_coverage(["settlement", "letter"], "Letter to client.docx") == 0.5
        assert keyword_coverage([], "anything") == 0.0

    def test_normalize_separators(self):
        assert normalize_separators("Medical_Records - 2023") == normalize_separators("medical records 2023")


class TestStoragePaths:
    """Tests for turning document references into storage paths."""

    def test_plain_path(self):
        assert to_storage_path("/100/a/b.pdf") == "100/a/b.pdf"

    def test_blob_url_drops_container(self):
        url = "https://acct.blob.core.windows.net/case-documents/100/Some%20File.pdf"

        assert to_storage_path(url, "case-documents") == "100/Some File.pdf"

    def test_indexer_parent_id(self):
        url = "https://acct.blob.core.windows.net/case-documents/200/letter.docx"
        encoded = base64.urlsafe_b64encode(url.encode()).decode()
        stripped = encoded.rstrip("=")
        parent_id = stripped + str(len(encoded) - len(stripped))

        assert decode_parent_id(parent_id) == url
        assert to_storage_path(parent_id, "case-documents") == "200/letter.docx"

    def test_case_shaped_path_is_not_decoded(self, monkeypatch):
        import casegate.storage.paths as paths

        def fail_decode(value):
            raise AssertionError(f"decoded {value}")

        monkeypatch.setattr(paths, "decode_parent_id", fail_decode)

        assert to_storage_path("100/Notes") == "100/Notes"
        assert to_storage_path("case-documents/100/Notes", "case-documents") == "100/Notes"
        assert to_storage_path("CV-2023-001/Notes", namespace=CaseNamespace(r"^CV-\d{4}-\d{3}$")) == "CV-2023-001/Notes"

    def test_uninterpretable(self):
        assert to_storage_path(None) is None
        assert to_storage_path("   ") is None
