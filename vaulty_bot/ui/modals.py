from __future__ import annotations

import logging

import discord

from ..core.errors import ValidationFailed, VaultyError
from ..core.models import Question
from ..core.storage import GuildConfigStore

log = logging.getLogger("vaulty.ui")

VALIDATIONS = ("required", "optional", "email", "url", "phone")
_KIND_FOR = {"email": "email", "phone": "phone"}


def parse_validation(raw: str) -> str:
    value = (raw or "required").strip().lower()
    if value not in VALIDATIONS:
        raise ValidationFailed(f"Validation must be one of: {', '.join(VALIDATIONS)}")
    return value


class AddQuestionModal(discord.ui.Modal, title="Add Onboarding Question"):
    def __init__(self, store: GuildConfigStore, guild_id: int) -> None:
        super().__init__()
        self.store = store
        self.guild_id = guild_id
        self.text_input = discord.ui.TextInput(
            label="Question text",
            style=discord.TextStyle.long,
            placeholder="What is your TikTok username?",
            required=True,
            max_length=500,
        )
        self.validation_input = discord.ui.TextInput(
            label="Validation rule",
            placeholder="required, optional, email, url or phone",
            default="required",
            required=False,
            max_length=10,
        )
        self.placeholder_input = discord.ui.TextInput(
            label="Example answer",
            placeholder="e.g., khaby.lame",
            required=False,
            max_length=100,
        )
        self.add_item(self.text_input)
        self.add_item(self.validation_input)
        self.add_item(self.placeholder_input)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        try:
            validation = parse_validation(self.validation_input.value)
            question = self.store.add_question(
                self.guild_id,
                self.text_input.value.strip(),
                kind=_KIND_FOR.get(validation, "text"),
                validation=validation,
                placeholder=(self.placeholder_input.value or "").strip(),
            )
        except (VaultyError, ValueError) as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return
        log.info("Question %s added in guild %s by %s", question.id, self.guild_id, interaction.user)
        await interaction.response.send_message(
            f"✅ Added question {question.order}: {question.text}\nID: `{question.id}`",
            ephemeral=True,
        )


class EditQuestionModal(discord.ui.Modal, title="Edit Onboarding Question"):
    def __init__(self, store: GuildConfigStore, guild_id: int, question: Question) -> None:
        super().__init__()
        self.store = store
        self.guild_id = guild_id
        self.question_id = question.id
        self.text_input = discord.ui.TextInput(
            label="Question text",
            style=discord.TextStyle.long,
            default=question.text,
            required=True,
            max_length=500,
        )
        self.validation_input = discord.ui.TextInput(
            label="Validation rule",
            placeholder="required, optional, email, url or phone",
            default=question.validation,
            required=False,
            max_length=10,
        )
        self.placeholder_input = discord.ui.TextInput(
            label="Example answer",
            default=question.placeholder,
            required=False,
            max_length=100,
        )
        self.add_item(self.text_input)
        self.add_item(self.validation_input)
        self.add_item(self.placeholder_input)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        try:
            validation = parse_validation(self.validation_input.value)
            question = self.store.update_question(
                self.guild_id,
                self.question_id,
                text=self.text_input.value.strip(),
                kind=_KIND_FOR.get(validation, "text"),
                validation=validation,
                placeholder=(self.placeholder_input.value or "").strip(),
            )
        except (VaultyError, ValueError) as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return
        await interaction.response.send_message(
            f"✅ Updated question {question.order}: {question.text}", ephemeral=True
        )
