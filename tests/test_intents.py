import pytest

from app.services.intents import (
    Intent,
    classify,
    extract_link,
    extract_quantity,
    primary_system_action,
    product_keyword,
)


@pytest.mark.parametrize("message", ["hello there", "Good morning!", "thanks a lot", "how are you today"])
def test_messages_without_keywords_are_plain_chat(message):
    assert classify(message) == {Intent.PLAIN_CHAT}


@pytest.mark.parametrize("message", ["What did I buy last month?", "show my purchase history", "My orders please"])
def test_history_phrases(message):
    assert Intent.PURCHASE_HISTORY_QUERY in classify(message)


def test_specific_history_outranks_general_history():
    intents = classify("have i purchased this before?")
    assert Intent.SPECIFIC_PRODUCT_HISTORY_QUERY in intents
    assert Intent.PURCHASE_HISTORY_QUERY in intents
    assert primary_system_action(intents) is Intent.SPECIFIC_PRODUCT_HISTORY_QUERY


def test_purchase_confirmation():
    intents = classify("yes add it")
    assert Intent.PURCHASE_INTENT in intents
    assert primary_system_action(intents) is Intent.PURCHASE_INTENT


def test_purchase_can_also_be_a_search():
    intents = classify("I want to buy this")
    assert {Intent.PURCHASE_INTENT, Intent.PRODUCT_SEARCH} <= intents


def test_cart_management():
    intents = classify("please remove the mug from my cart")
    assert Intent.CART_MANAGEMENT in intents


def test_follow_up_implies_search():
    intents = classify("is there any other option?")
    assert {Intent.FOLLOW_UP, Intent.PRODUCT_SEARCH} <= intents
    assert primary_system_action(intents) is None


def test_detailed_requirements_need_length():
    assert Intent.PRODUCT_SEARCH in classify("I need a laptop for gaming and daily work")
    assert classify("for me") == {Intent.PLAIN_CHAT}


def test_consultation_answers_count_as_search():
    assert Intent.PRODUCT_SEARCH in classify("mostly outdoors")
    assert Intent.PRODUCT_SEARCH in classify("$50-100")
    assert Intent.PRODUCT_SEARCH in classify("Rp 2-3 juta")


@pytest.mark.parametrize(
    "message, intent",
    [
        ("pesanan saya", Intent.PURCHASE_INTENT),
        ("I am ordering later", Intent.PURCHASE_INTENT),
        ("understand", Intent.PRODUCT_SEARCH),
        ("elsewhere", Intent.FOLLOW_UP),
    ],
)
def test_phrases_match_inside_longer_words(message, intent):
    assert intent in classify(message)


def test_short_affirmatives_match_whole_words_only():
    assert Intent.PURCHASE_INTENT not in classify("looking good")
    assert Intent.PURCHASE_INTENT not in classify("my eyes hurt")
    assert Intent.PURCHASE_INTENT in classify("OK!")
    assert Intent.PURCHASE_INTENT in classify("yes please")


def test_classification_is_case_insensitive():
    assert classify("WHAT DID I BUY") == classify("what did i buy")


@pytest.mark.parametrize(
    "message, expected",
    [
        ("add 3 pieces to cart", 3),
        ("add to cart", 1),
        ("I'll take 2 items", 2),
        ("beli 5 buah", 5),
        ("10pcs please", 10),
        ("0 pieces", 1),
    ],
)
def test_extract_quantity(message, expected):
    assert extract_quantity(message) == expected


def test_extract_link():
    assert extract_link("see https://shop.example.com/products/tee?x=1 thanks") == (
        "https://shop.example.com/products/tee?x=1"
    )
    assert extract_link("no links here") is None


def test_product_keyword_prefers_list_order():
    assert product_keyword("That T-Shirt looked great, also a phone") == "t-shirt"
    assert product_keyword("nothing relevant") is None
