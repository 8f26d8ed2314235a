"""Run a three step workflow in-process against the mock provider."""

import asyncio

from stepflow import (
    CreateWorkflowRequest,
    ExecutionDispatcher,
    ModelConfig,
    StepDefinition,
)
from stepflow.persistence import InMemoryExecutionRepository


async def main():
    repository = InMemoryExecutionRepository()
    workflow = await repository.create_workflow(
        CreateWorkflowRequest(
            name="Demo",
            steps=[
                StepDefinition(
                    order=1,
                    prompt_template="Analyze the following text: {{input}}",
                    model_settings=ModelConfig(model="demo-model"),
                ),
                StepDefinition(
                    order=2,
                    prompt_template="Extract key entities from analysis",
                    model_settings=ModelConfig(model="demo-model"),
                ),
            ],
        )
    )

    dispatcher = ExecutionDispatcher(repository)
    execution_id = await dispatcher.start_execution(
        workflow.id, {"input": "stepflow runs prompts in order"}
    )
    print(f"Started execution {execution_id}")

    await dispatcher.wait(execution_id)
    detail = await dispatcher.get_execution_detail(execution_id)
    print(f"Status: {detail.status}")
    for log in detail.logs:
        print(f"- step {log.step_order}: {log.status} -> {log.output_content}")


if __name__ == "__main__":
    asyncio.run(main())
