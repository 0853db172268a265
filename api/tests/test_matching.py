from tutordesk.services.matching import (
    TutorMatchContext,
    filter_requirements,
    location_matches,
    requirement_matches,
    subject_matches,
)


def test_subject_matches_is_case_insensitive_and_bidirectional() -> None:
    assert subject_matches(["Math"], "mathematics")
    assert subject_matches(["Advanced Mathematics"], "MATH")
    assert not subject_matches(["Physics"], "Chemistry")


def test_subject_matches_fails_open_without_tutor_subjects() -> None:
    assert subject_matches([], "Anything")
    assert subject_matches(None, "Anything")
    assert subject_matches(["", "  "], "Anything")


def test_blank_requirement_subject_never_matches_configured_tutor() -> None:
    assert not subject_matches(["Math"], "")
    assert not subject_matches(["Math"], None)
    assert not subject_matches(["Math"], "   ")


def test_blank_tutor_subject_is_ignored_when_others_are_set() -> None:
    assert not subject_matches(["", "Physics"], "Chemistry")
    assert subject_matches(["", "Physics"], "physics")


def test_location_matches_city_in_either_direction() -> None:
    assert location_matches("Pune", None, "Kothrud, Pune")
    assert location_matches("Pune City", None, "pune")
    assert not location_matches("Mumbai", None, "Pune")


def test_location_matches_area_contained_in_location() -> None:
    assert location_matches("Bengaluru", "Koramangala", "Koramangala 5th Block, Bangalore")
    assert not location_matches("Bengaluru", "Koramangala 5th Block", "Koramangala")


def test_location_matches_fails_open_on_missing_data() -> None:
    assert location_matches(None, "Kothrud", "Delhi")
    assert location_matches("", None, "Delhi")
    assert location_matches("Pune", None, None)
    assert location_matches("Pune", None, "")


def test_requirement_matches_needs_subject_and_location() -> None:
    context = TutorMatchContext(subjects=("Math",), city="Pune", area=None)

    assert requirement_matches(context, {"subject": "Mathematics", "location": "Pune"})
    assert not requirement_matches(context, {"subject": "Mathematics", "location": "Delhi"})
    assert not requirement_matches(context, {"subject": "Biology", "location": "Pune"})


def test_filter_requirements_preserves_order() -> None:
    context = TutorMatchContext.from_profiles(
        {"subjects": ["Math", 7, "Physics"]},
        {"city": " Pune ", "area": ""},
    )
    requirements = [
        {"id": "a", "subject": "Physics", "location": "Pune"},
        {"id": "b", "subject": "History", "location": "Pune"},
        {"id": "c", "subject": "math", "location": None},
    ]

    matched = filter_requirements(context, requirements)

    assert context.subjects == ("Math", "Physics")
    assert context.city == "Pune"
    assert context.area is None
    assert [req["id"] for req in matched] == ["a", "c"]


def test_context_without_profiles_matches_everything() -> None:
    context = TutorMatchContext.from_profiles(None, None)

    assert requirement_matches(context, {"subject": "Art", "location": "Goa"})
