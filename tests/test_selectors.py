from survey_explorer.engine.selectors import (
    build_container_selector,
    classify_nav_label,
    clean_question_text,
    numeric_labels,
    parse_question_number,
    promote_input_kind,
    strip_choice_labels,
)

ROOT = "#survey-body-container"
CONTAINER = '[class*="CardBox"]'


def test_question_number_parsing_drops_trailing_dot():
    assert parse_question_number("2.3. How often do you exercise?") == "2.3"
    assert parse_question_number("12 Describe your symptoms") == "12"
    assert parse_question_number("How often?") == ""


def test_clean_question_text_strips_choices_then_reads_required_marker():
    number, text, required = clean_question_text("3. Do you smoke? * Yes No", ["Yes", "No"])

    assert number == "3"
    assert text == "Do you smoke?"
    assert required is True


def test_asterisk_inside_text_is_not_a_required_marker():
    _, text, required = clean_question_text("4. Rate A*B compounds", [])

    assert text == "Rate A*B compounds"
    assert required is False


def test_choice_stripping_respects_word_boundaries_and_longest_first():
    assert strip_choice_labels("Is it Nowhere near? No", ["No"]) == "Is it Nowhere near?"
    assert strip_choice_labels("How was it? Very good Good", ["Good", "Very good"]) == "How was it?"


def test_container_selector_preference_order():
    base = {"index": 1, "tag": "div", "rawText": "5. Question", "parentSelector": ROOT, "nthOfType": 2}

    assert build_container_selector({**base, "id": "q5"}, ROOT, CONTAINER) == f"{ROOT} #q5"
    assert (
        build_container_selector({**base, "dataAttrs": {"data-testid": "question-5"}}, ROOT, CONTAINER)
        == f'{ROOT} [data-testid="question-5"]'
    )
    assert build_container_selector(base, ROOT, CONTAINER) == f"{ROOT} > div{CONTAINER}:nth-of-type(2)"

    structural = {"index": 1, "rawText": "5. Question", "ancestorPath": ["div:nth-child(1)", "div:nth-child(3)"]}
    assert build_container_selector(structural, ROOT, CONTAINER) == f"{ROOT} > div:nth-child(1) > div:nth-child(3)"

    assert build_container_selector({"index": 1, "rawText": "5. Question"}, ROOT, CONTAINER).startswith(ROOT)


def test_unnumbered_container_falls_back_to_nth_match():
    assert build_container_selector({"index": 2, "rawText": "Untitled"}, ROOT, CONTAINER) == f"{ROOT} :nth-match({CONTAINER}, 3)"


def test_every_container_selector_is_rooted():
    raws = [
        {"id": "x"},
        {"parentSelector": "#inner", "nthOfType": 1, "tag": "section"},
        {"rawText": "Untitled", "index": 0},
    ]
    for raw in raws:
        assert build_container_selector(raw, ROOT, CONTAINER).startswith(ROOT)


def test_nav_label_taxonomy():
    assert classify_nav_label("Next") == "next"
    assert classify_nav_label("Continue →") == "next"
    assert classify_nav_label("← Back") == "previous"
    assert classify_nav_label("Previous") == "previous"
    assert classify_nav_label("Submit") == "finish"
    assert classify_nav_label("Save draft") is None


def test_numeric_labels_sorted_by_value():
    assert numeric_labels(["10", "2", "0", "Clear", "2"]) == ["0", "2", "10"]


def test_text_inputs_promoted_on_date_or_weight_vocabulary():
    assert promote_input_kind("text", "Date of your last visit") == "date"
    assert promote_input_kind("text", "When did it start?", {"placeholder": "dd/mm/yyyy"}) == "date"
    assert promote_input_kind("text", "What is your weight?") == "autocomplete_dropdown"
    assert promote_input_kind("text", "Your city") == "text"
    assert promote_input_kind("email", "Date of birth") == "email"
