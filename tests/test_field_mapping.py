import pytest

from contact_import.field_mapping import (
    FieldKind,
    FieldMapping,
    TargetField,
    guess_field,
    guess_mapping,
)


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Full Name", TargetField.NAME),
        ("E-mail Address", TargetField.EMAIL),
        ("Phone Number", TargetField.PHONE),
        ("State", TargetField.LOCATION),
        ("Instagram Name", TargetField.INSTAGRAM_HANDLE),
        ("IG", TargetField.INSTAGRAM_HANDLE),
        ("Website URL", TargetField.WEBSITE),
        ("Followers", TargetField.FOLLOWERS),
        ("Following", TargetField.FOLLOWING),
        ("# Posts", TargetField.POSTS),
        ("Avg Likes", TargetField.AVG_LIKES),
        ("Avg. Comments", TargetField.AVG_COMMENTS),
        ("Bio", TargetField.BIOGRAPHY),
        ("Notes", TargetField.BIOGRAPHY),
        ("Tags", TargetField.TAGS),
        ("Favourite colour", TargetField.IGNORE),
    ],
)
def test_guess_field(header, expected):
    assert guess_field(header) is expected


def test_first_matching_rule_wins():
    # "number" is claimed by the phone rule before the followers rule is reached
    assert guess_field("Follower Number") is TargetField.PHONE
    assert guess_field("Email Notes") is TargetField.EMAIL


def test_guess_mapping_is_total():
    mapping = guess_mapping(["Name", "Email", "Shoe size"])
    assert mapping.as_dict() == {"Name": "name", "Email": "email", "Shoe size": "ignore"}
    assert TargetField.IGNORE.kind is FieldKind.NONE


def test_operator_override_allows_repeated_targets():
    mapping = guess_mapping(["Name", "Nickname"])
    mapping.assign("Nickname", "name")
    assert mapping.headers_for(TargetField.NAME) == ["Name", "Nickname"]
    assert mapping.header_for(TargetField.NAME) == "Nickname"


def test_assign_accepts_labels_and_rejects_unknown_targets():
    mapping = FieldMapping(headers=("Col",))
    mapping.assign("Col", "Instagram Handle")
    assert mapping.target_for("Col") is TargetField.INSTAGRAM_HANDLE
    with pytest.raises(ValueError):
        mapping.assign("Col", "shoe_size")
    with pytest.raises(KeyError):
        mapping.assign("Missing", "name")
