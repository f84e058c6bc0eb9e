"""Tests for RunTree construction, lifecycle and remote synchronisation."""

import asyncio
import uuid

import pytest

from runtrace.exceptions import RunTraceAPIError, RunTreeStateError
from runtrace.run_trees import RunTree


def _tree(client, **kwargs):
    kwargs.setdefault("inputs", {"input": "hello world"})
    kwargs.setdefault("project_name", "__test_run_trees")
    return RunTree("parent_run", "chain", client=client, **kwargs)


class TestLocalLifecycle:
    """Building and ending trees never touches the network."""

    def test_root_defaults(self, client):
        run = _tree(client)
        assert isinstance(run.id, uuid.UUID)
        assert run.is_root
        assert run.execution_order == 1
        assert run.end_time is None
        assert run.child_runs == []

    def test_name_and_run_type_required(self, client):
        with pytest.raises(ValueError):
            RunTree("", "chain", client=client)
        with pytest.raises(ValueError):
            RunTree("x", "", client=client)

    def test_id_is_read_only(self, client):
        run = _tree(client)
        with pytest.raises(AttributeError):
            run.id = uuid.uuid4()

    def test_create_child_links_parent_and_keeps_creation_order(self, client, service):
        parent = _tree(client)
        first = parent.create_child("llm_call", "llm", inputs={"prompt": "hi"})
        second = parent.create_child("tool_call", "tool")

        assert parent.child_runs == [first, second]
        assert first.parent_run is parent and first.parent_run_id == parent.id
        assert first.project_name == parent.project_name
        assert first.id != second.id != parent.id
        assert (first.execution_order, second.execution_order) == (2, 3)
        assert service.requests == []

    def test_grandchild_execution_order_propagates_on_end(self, client):
        root = _tree(client)
        child = root.create_child("child", "chain")
        grandchild = child.create_child("grandchild", "llm")
        grandchild.end(outputs={"output": "x"})
        child.end(outputs={"output": "y"})

        sibling = root.create_child("sibling", "tool")
        assert (child.execution_order, grandchild.execution_order, sibling.execution_order) == (2, 3, 4)

    def test_end_records_outputs_or_error_once(self, client):
        run = _tree(client)
        run.end(outputs={"output": "abcd"})
        assert run.outputs == {"output": "abcd"}
        assert run.end_time is not None

        with pytest.raises(RunTreeStateError):
            run.end(error="too late")
        assert run.outputs == {"output": "abcd"} and run.error is None

        failed = _tree(client)
        failed.end(error="ValueError: boom")
        assert failed.error == "ValueError: boom" and failed.outputs is None

    def test_cannot_begin_child_under_ended_parent(self, client):
        run = _tree(client)
        run.end(outputs={})
        with pytest.raises(RunTreeStateError):
            run.create_child("late", "tool")

    def test_parent_complete_only_when_children_complete_or_abandoned(self, client):
        parent = _tree(client)
        done = parent.create_child("done", "tool")
        pending = parent.create_child("pending", "tool")
        done.end(outputs={"output": 1})
        parent.end(outputs={"output": 2})

        assert not parent.is_complete
        pending.abandon()
        assert parent.is_complete

    def test_patch_before_post_is_rejected_synchronously(self, client, service):
        run = _tree(client)
        run.end(outputs={"output": "x"})
        with pytest.raises(RunTreeStateError):
            run.patch()
        assert service.requests == []

    def test_snapshots(self, client):
        example_id = uuid.uuid4()
        parent = _tree(client, reference_example_id=example_id, serialized={"repr": "Chain()"})
        child = parent.create_child("child", "llm", inputs={"prompt": "p"})
        child.add_event("new_token", token="a")

        create = child.to_create()
        assert create["parent_run_id"] == parent.id
        assert create["session_name"] == "__test_run_trees"
        assert create["extra"]["runtime"]["runtime"] == "python"
        assert create["events"][0]["name"] == "new_token"

        parent_create = parent.to_create()
        assert parent_create["reference_example_id"] == example_id
        assert parent_create["serialized"] == {"repr": "Chain()"}
        assert parent_create["parent_run_id"] is None


class TestRemoteSync:
    @pytest.mark.asyncio
    async def test_post_then_patch_round_trips_inputs_and_outputs(self, client):
        run = _tree(client, inputs={"input": "hello world", "nested": {"k": [1, 2]}})
        await run.post()
        run.end(outputs={"output": "abcd"})
        await run.patch()

        stored = await client.read_run(run.id)
        assert stored.id == run.id
        assert stored.inputs == {"input": "hello world", "nested": {"k": [1, 2]}}
        assert stored.outputs == {"output": "abcd"}
        assert stored.end_time is not None
        assert stored.execution_order == 1

    @pytest.mark.asyncio
    async def test_patch_is_never_sent_before_its_post(self, client, service):
        run = _tree(client)
        post = run.post()
        run.end(outputs={"output": "done"})
        patch = run.patch()
        # Await in the opposite order; the service must still see create first
        await patch
        await post
        assert service.ops_for_run(run.id) == ["create", "update"]

    @pytest.mark.asyncio
    async def test_patch_snapshot_is_taken_at_call_time(self, client, service):
        run = _tree(client)
        run.post()
        run.end(outputs={"output": "first"})
        patch = run.patch()
        run.outputs = {"output": "mutated later"}
        await patch
        assert service.runs[str(run.id)]["outputs"] == {"output": "first"}

    @pytest.mark.asyncio
    async def test_post_twice_leaves_one_remote_record(self, client, service):
        run = _tree(client)
        await run.post()
        await run.post()

        assert list(service.runs) == [str(run.id)]
        runs = await client.list_runs(run_ids=[run.id]).to_list()
        assert [r.id for r in runs] == [run.id]

    @pytest.mark.asyncio
    async def test_child_may_be_posted_before_parent(self, client, service):
        parent = _tree(client)
        child = parent.create_child("child", "llm")
        await child.post()
        await parent.post()

        assert service.runs[str(child.id)]["parent_run_id"] == str(parent.id)
        assert str(parent.id) in service.runs

    @pytest.mark.asyncio
    async def test_post_including_children_posts_whole_tree(self, client, service):
        parent = _tree(client)
        child = parent.create_child("child", "chain")
        grandchild = child.create_child("grandchild", "llm")

        await parent.post(exclude_child_runs=False)
        await grandchild.wait()

        assert set(service.runs) == {str(parent.id), str(child.id), str(grandchild.id)}
        created = [body["id"] for method, path, body in service.requests if method == "POST"]
        assert created == [str(parent.id), str(child.id), str(grandchild.id)]
        stored = await client.read_run(parent.id, load_child_runs=True)
        assert [c.id for c in stored.child_runs] == [child.id]
        assert [g.id for g in stored.child_runs[0].child_runs] == [grandchild.id]
        assert stored.child_runs[0].child_runs[0].child_runs == []

    @pytest.mark.asyncio
    async def test_descendant_can_be_patched_right_after_tree_post(self, client, service):
        parent = _tree(client)
        child = parent.create_child("child", "llm")

        post = parent.post(exclude_child_runs=False)
        child.end(outputs={"output": "done"})
        patch = child.patch()
        await patch
        await post

        assert service.ops_for_run(parent.id) == ["create"]
        assert service.ops_for_run(child.id) == ["create", "update"]
        assert service.runs[str(child.id)]["outputs"] == {"output": "done"}

    @pytest.mark.asyncio
    async def test_tree_post_failure_stays_on_the_failing_child(self, client, service):
        parent = _tree(client)
        broken = parent.create_child("broken", "tool")
        sibling = parent.create_child("sibling", "tool")
        service.fail_run(broken.id, status=503)

        await parent.post(exclude_child_runs=False)
        await asyncio.wait([broken.last_request, sibling.last_request])

        assert isinstance(broken.last_request.exception(), RunTraceAPIError)
        assert sibling.last_request.exception() is None
        assert str(sibling.id) in service.runs
        assert str(broken.id) not in service.runs

    @pytest.mark.asyncio
    async def test_post_failure_surfaces_on_that_run_only(self, client, service):
        parent = _tree(client)
        child = parent.create_child("child", "tool")
        service.fail("POST", "/runs", status=503)

        with pytest.raises(RunTraceAPIError) as exc_info:
            await child.post()
        assert exc_info.value.status_code == 503

        # Local state is untouched and the run can be retried
        assert child.parent_run is parent and parent.child_runs == [child]
        service.clear_failures()
        await child.post()
        assert str(child.id) in service.runs

    @pytest.mark.asyncio
    async def test_patch_after_failed_post_is_still_sent_in_order(self, client, service):
        run = _tree(client)
        service.fail("POST", "/runs", status=500)
        post = run.post()
        run.end(outputs={"output": "x"})
        patch = run.patch()

        with pytest.raises(RunTraceAPIError):
            await post
        # The service never saw the create, so it rejects the update
        with pytest.raises(RunTraceAPIError) as exc_info:
            await patch
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_concurrent_children_are_all_kept(self, client, service):
        parent = _tree(client)
        await parent.post()

        async def work(i):
            child = parent.create_child(f"step-{i}", "tool", inputs={"i": i})
            await asyncio.sleep(0)
            await child.post()
            child.end(outputs={"i": i})
            await child.patch()
            return child

        children = await asyncio.gather(*(work(i) for i in range(20)))

        assert len(parent.child_runs) == 20
        assert {c.id for c in parent.child_runs} == {c.id for c in children}
        for child in children:
            assert service.ops_for_run(child.id) == ["create", "update"]

    @pytest.mark.asyncio
    async def test_wait_drains_pending_requests(self, client, service):
        run = _tree(client)
        run.post()
        run.end(outputs={"output": 1})
        run.patch()
        await run.wait()
        assert service.ops_for_run(run.id) == ["create", "update"]

    def test_post_requires_running_loop(self, client):
        run = _tree(client)
        with pytest.raises(RuntimeError):
            run.post()
