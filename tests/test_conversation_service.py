from app.services import conversation_service


async def test_history_keeps_most_recent_messages(monkeypatch, test_settings):
    monkeypatch.setattr(test_settings, "MAX_HISTORY_MESSAGES", 3)
    for index in range(5):
        await conversation_service.add_message("chat_1", "user", f"message {index}", handle="+1555")

    history = await conversation_service.get_conversation("chat_1")

    assert [message.content for message in history] == ["message 2", "message 3", "message 4"]
    assert history[0].handle == "+1555"


async def test_history_ttl_refreshes_on_write(memory_store, monkeypatch, test_settings):
    clock = [0.0]
    monkeypatch.setattr(memory_store, "_clock", lambda: clock[0])
    monkeypatch.setattr(test_settings, "CONVERSATION_TTL_SECONDS", 100)

    await conversation_service.add_message("chat_1", "user", "first")
    clock[0] = 90
    await conversation_service.add_message("chat_1", "assistant", "second")
    clock[0] = 150

    assert len(await conversation_service.get_conversation("chat_1")) == 2

    clock[0] = 191
    assert await conversation_service.get_conversation("chat_1") == []


async def test_clear_conversation_keeps_profile():
    await conversation_service.add_message("chat_1", "user", "hi", handle="+1555")
    await conversation_service.set_user_name("+1555", "Sam")

    await conversation_service.clear_conversation("chat_1")

    assert await conversation_service.get_conversation("chat_1") == []
    assert (await conversation_service.get_user_profile("+1555")).name == "Sam"


async def test_facts_are_deduplicated():
    assert await conversation_service.add_user_fact("+1555", "vegetarian") is True
    assert await conversation_service.add_user_fact("+1555", "vegetarian") is False

    profile = await conversation_service.get_user_profile("+1555")
    assert profile.facts == ["vegetarian"]


async def test_unchanged_name_is_not_an_update():
    assert await conversation_service.set_user_name("+1555", "Sam") is True
    assert await conversation_service.set_user_name("+1555", "Sam") is False


async def test_forget_profile():
    await conversation_service.add_user_fact("+1555", "likes sushi")
    await conversation_service.clear_user_profile("+1555")

    assert await conversation_service.get_user_profile("+1555") is None


async def test_chat_count_increments():
    assert await conversation_service.increment_chat_count("chat_1") == 1
    assert await conversation_service.increment_chat_count("chat_1") == 2
    assert await conversation_service.increment_chat_count("chat_2") == 1


async def test_fifty_first_message_drops_the_oldest():
    for index in range(51):
        await conversation_service.add_message("chat_1", "user", f"message {index}")

    history = await conversation_service.get_conversation("chat_1")

    assert len(history) == 50
    assert history[0].content == "message 1"
    assert history[-1].content == "message 50"
